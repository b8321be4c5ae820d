from __future__ import annotations

import logging
import os.path
import pickle
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, AnyStr

import yaml
from attrs import define
from cattrs import structure, unstructure

from open_dynamics.mpi.mpi_funcs import get_mpi_variables

logger = logging.getLogger()

COMM, RANK, SIZE, NAME, PARALLEL = get_mpi_variables()


@define
class ResultConfig:
    """Selects the fields of evolution and ensemble results that are recorded."""

    times: bool = True
    expect: bool = True
    std_error: bool = True
    n_completed: bool = True
    final_state: bool = False
    jump_logs: bool = False

    def to_dict(self):
        return unstructure(self)

    def to_yaml(self, folder):
        """save config as yaml"""
        if not os.path.exists(folder):
            os.makedirs(folder)

        p = Path(folder)
        config_path = p / "result_config.yaml"
        with open(config_path, "w") as file:
            yaml.dump(self.to_dict(), file)

    @classmethod
    def from_yaml(cls, folder: str) -> ResultConfig:
        """initialize config from yaml"""
        p = Path(folder)
        config_path = p / "result_config.yaml"

        if not config_path.is_file():
            raise FileNotFoundError(f"no result config available in {config_path}")
        with open(config_path, "r") as file:
            loaded_dict = yaml.safe_load(file)

        logger.info(f"loaded ResultConfig from {folder}")
        return structure(loaded_dict, cls)


@dataclass
class ResultStore:
    """
    Collects the recorded fields of consecutive results (one entry per `update`)
    and persists them as one pickle file per field under a checkpoint folder.
    """

    config: ResultConfig = field(default_factory=ResultConfig)

    def __post_init__(self):
        self._get_empty_container()

    def _get_empty_container(self):
        self.results_dict: Dict[AnyStr, list] = dict()
        for field_name, value in self.config.to_dict().items():
            if value:
                self.results_dict[field_name] = []

    @classmethod
    def from_yaml(cls, folder: str) -> ResultStore:
        config = ResultConfig.from_yaml(folder)
        return cls(config=config)

    def to_yaml(self, folder: str):
        """save config as yaml"""
        self.config.to_yaml(folder)

    def update(self, result: Any):
        """Record the selected fields of an EvolutionResult or EnsembleResult."""
        for field_name, data_list in self.results_dict.items():
            value = getattr(result, field_name, None)
            if value is not None:
                data_list.append(value)

    def save_checkpoint(self, folder: str, warning: bool = True):
        """saving and loading should only take place at root"""
        if RANK == 0:
            path = Path(folder)
            path.mkdir(parents=True, exist_ok=True)

            for field_name, data_list in self.results_dict.items():
                filepath = path / (field_name + ".pkl")
                if filepath.is_file() and warning:
                    logger.warning(f"{filepath} exists and is overwritten")
                with open(filepath, "wb") as file:
                    pickle.dump(data_list, file, protocol=pickle.HIGHEST_PROTOCOL)
            logger.info(f"saved results under {path}")

            self.config.to_yaml(folder)
        else:
            # empty the buffer for all other MPI processes
            self._get_empty_container()

    def load_checkpoint(self, folder: str):
        """load results from checkpoint at root"""
        p = Path(folder)
        if RANK == 0 and self.filepath_exists(folder):
            for field_name in self.results_dict:
                with open(p / (field_name + ".pkl"), "rb") as file:
                    self.results_dict[field_name] = pickle.load(file)

    def attach_to_existing_file(self, folder: str):
        """loads stored results, appends the buffer and saves the checkpoint"""
        if RANK == 0:
            p = Path(folder)
            if self.filepath_exists(folder):
                for field_name, data_list in self.results_dict.items():
                    with open(p / (field_name + ".pkl"), "rb") as file:
                        loaded_data = pickle.load(file)
                    self.results_dict[field_name] = loaded_data + data_list

                self.save_checkpoint(folder, warning=False)
                logger.info(f"attached results to existing files in {folder}")
            else:
                self.save_checkpoint(folder, warning=True)
        else:
            self._get_empty_container()

    def filepath_exists(self, folder: str) -> bool:
        """checks if files exist"""
        p = Path(folder)
        return all(
            (p / (field_name + ".pkl")).is_file() for field_name in self.results_dict
        )

    def return_latest(self) -> dict:
        """Return last recorded values."""
        latest_values = dict()
        for field_name, values in self.results_dict.items():
            latest_values[field_name] = values[-1] if values else None
        return latest_values
