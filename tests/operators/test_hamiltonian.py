import os
import shutil

import numpy as np
import pytest

from open_dynamics.errors import DimensionMismatch, NonHermitianWarning
from open_dynamics.operators.constructors import basis, destroy, num, sigmam, tensor, qeye
from open_dynamics.operators.hamiltonian import Hamiltonian
from open_dynamics.operators.quantum_object import ObjectKind


class TestHamiltonian:
    @pytest.fixture
    def test_hamiltonian_1(self):
        return Hamiltonian(2.0 * num(5))

    @pytest.fixture
    def test_hamiltonian_2(self):
        a = tensor(destroy(3), qeye(2))
        return Hamiltonian(a.dag() @ a + 0.25 * (a + a.dag()))

    def test_save_checkpoint_from_checkpoint(self, test_hamiltonian_1, test_hamiltonian_2):
        folder = "test_folder"
        for test_hamiltonian in [test_hamiltonian_1, test_hamiltonian_2]:
            test_hamiltonian.save_checkpoint(folder)
            assert os.path.isdir("test_folder")
            assert os.path.isfile("test_folder/hamiltonian.pkl")
            assert os.path.isfile("test_folder/hamiltonian_config.yaml")

            loaded_hamiltonian = Hamiltonian.from_checkpoint(folder)
            assert loaded_hamiltonian == test_hamiltonian
            assert loaded_hamiltonian.dims == test_hamiltonian.dims

        shutil.rmtree("test_folder")

    def test_from_checkpoint_missing(self):
        with pytest.raises(FileNotFoundError):
            Hamiltonian.from_checkpoint("no_such_folder")

    def test_hamiltonian_is_copied(self):
        H = num(3)
        hamiltonian = Hamiltonian(H)
        H.data[1, 1] = 10.0
        assert hamiltonian.hamiltonian.full()[1, 1] == 1.0

    def test_non_hermitian_warning(self):
        with pytest.warns(NonHermitianWarning):
            Hamiltonian(sigmam())

    def test_requires_operator(self):
        with pytest.raises(DimensionMismatch):
            Hamiltonian(basis(2, 0))

    def test_check_state_and_observables(self, test_hamiltonian_1):
        test_hamiltonian_1.check_state(basis(5, 1), (ObjectKind.KET,))
        test_hamiltonian_1.check_observables([num(5)])
        with pytest.raises(DimensionMismatch):
            test_hamiltonian_1.check_state(basis(4, 1), (ObjectKind.KET,))
        with pytest.raises(DimensionMismatch):
            test_hamiltonian_1.check_state(basis(5, 1).dag(), (ObjectKind.KET,))
        with pytest.raises(DimensionMismatch):
            test_hamiltonian_1.check_observables([num(5), num(4)])

    def test_str(self, test_hamiltonian_1):
        string = str(test_hamiltonian_1)
        assert "Hamiltonian" in string
        assert "[5]" in string
        assert np.isclose(test_hamiltonian_1.size, 5)
