from __future__ import annotations

import logging
import pickle
from dataclasses import dataclass, asdict
from pathlib import Path

import numpy as np
import yaml

from open_dynamics.errors import DimensionMismatch
from open_dynamics.operators.quantum_object import ObjectKind, QuantumObject

logger = logging.getLogger()


@dataclass
class OperatorData:
    """Metadata stored next to pickled operators in a checkpoint."""

    name: str
    dims: list
    n_channels: int = 0
    sparse: bool = True


class Operator:
    """
    Base class of the generators of motion. Holds the Hamiltonian and knows how to
    compute expectation values of observables on the system it acts on.
    """

    # file stem used for checkpoints
    checkpoint_name = "operator"

    def __init__(self, hamiltonian: QuantumObject, name: str | None = None):
        if not isinstance(hamiltonian, QuantumObject):
            raise TypeError(f"expected QuantumObject, got {type(hamiltonian)}")
        if hamiltonian.kind is not ObjectKind.OPERATOR:
            raise DimensionMismatch(
                f"Hamiltonian must be an operator, got {hamiltonian.kind.value}"
            )
        self._hamiltonian = hamiltonian.copy()
        self.name = name or self.__class__.__name__

    @property
    def hamiltonian(self) -> QuantumObject:
        return self._hamiltonian

    @property
    def dims(self) -> list[int]:
        return self._hamiltonian.dims

    @property
    def size(self) -> int:
        return self._hamiltonian.size

    @property
    def c_ops(self) -> list[QuantumObject]:
        return []

    @property
    def effective_hamiltonian(self) -> QuantumObject:
        """Generator of the norm-decaying evolution between quantum jumps"""
        return self._hamiltonian

    def check_observables(self, e_ops: list[QuantumObject]):
        for k, e_op in enumerate(e_ops):
            if e_op.kind is not ObjectKind.OPERATOR or e_op.dims != self.dims:
                raise DimensionMismatch(
                    f"observable {k} ({e_op.kind.value}, dims {e_op.dims}) "
                    f"does not act on a system with dims {self.dims}"
                )

    def check_state(self, state: QuantumObject, kinds: tuple[ObjectKind, ...]):
        if state.kind not in kinds:
            raise DimensionMismatch(
                f"{self.name} cannot evolve a {state.kind.value}; "
                f"expected one of {[k.value for k in kinds]}"
            )
        if state.dims != self.dims:
            raise DimensionMismatch(
                f"state dims {state.dims} do not match operator dims {self.dims}"
            )

    def _checkpoint_payload(self) -> list:
        return [self._hamiltonian]

    def save_checkpoint(self, folder: str):
        """
        Save the operator under folder.
        """
        meta_data = OperatorData(
            name=self.name,
            dims=self.dims,
            n_channels=len(self.c_ops),
            sparse=self._hamiltonian.is_sparse,
        )
        meta_data = asdict(meta_data)

        p = Path(folder)
        p.mkdir(parents=True, exist_ok=True)

        filepath = p / f"{self.checkpoint_name}.pkl"
        metadata = p / f"{self.checkpoint_name}_config.yaml"
        if filepath.is_file() and metadata.is_file():
            logger.warning("files exist")

        with open(filepath, "wb") as file:
            pickle.dump(self._checkpoint_payload(), file, protocol=pickle.HIGHEST_PROTOCOL)

        with open(metadata, "w") as file:
            yaml.dump(meta_data, file)

        logger.info(f"saved {self.name} in {filepath}")

    @classmethod
    def _load_checkpoint(cls, folder: str) -> tuple[list, OperatorData]:
        p = Path(folder)
        filepath = p / f"{cls.checkpoint_name}.pkl"
        metadata = p / f"{cls.checkpoint_name}_config.yaml"

        if filepath.is_file() and metadata.is_file():
            with open(filepath, "rb") as file:
                payload = pickle.load(file)
            with open(metadata, "r") as file:
                loaded = yaml.safe_load(file)
            meta_data = OperatorData(**loaded)
        else:
            raise FileNotFoundError(f"no file available in {filepath}")

        logger.info(f"loaded checkpoint from {folder}")
        return payload, meta_data

    def __eq__(self, other):
        if not isinstance(other, Operator) or type(other) is not type(self):
            return False
        return self._hamiltonian == other.hamiltonian and len(self.c_ops) == len(
            other.c_ops
        ) and all(a == b for a, b in zip(self.c_ops, other.c_ops))

    def __str__(self):
        string = f"{self.name}:\n\n"
        string += "\t{:<25}: {}\n".format("dims", self.dims)
        string += "\t{:<25}: {}\n".format("Hilbert space size", self.size)
        string += "\t{:<25}: {}\n".format("sparse", self._hamiltonian.is_sparse)
        string += "\t{:<25}: {}\n".format("collapse operators", len(self.c_ops))
        string += "\t{:<25}: {:.3e}\n".format(
            "|H|", float(np.linalg.norm(self._hamiltonian.full()))
        )
        return string
