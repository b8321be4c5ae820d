import numpy as np


def RK45_parameters():
    # Runge-Kutta-Fehlberg 4 (5) coefficients
    c = np.array([0, 1 / 4, 3 / 8, 12 / 13, 1, 1 / 2])
    a = np.array(
        [
            [0, 0, 0, 0, 0, 0],
            [1 / 4, 0, 0, 0, 0, 0],
            [3 / 32, 9 / 32, 0, 0, 0, 0],
            [1932 / 2197, -7200 / 2197, 7296 / 2197, 0, 0, 0],
            [439 / 216, -8, 3680 / 513, -845 / 4104, 0, 0],
            [-8 / 27, 2, -3544 / 2565, 1859 / 4104, -11 / 40, 0],
        ]
    )
    b5 = np.array([16 / 135, 0, 6656 / 12825, 28561 / 56430, -9 / 50, 2 / 55])
    b4 = np.array([25 / 216, 0, 1408 / 2565, 2197 / 4104, -1 / 5, 0])

    return c, a, b5, b4


def RK23_parameters():
    # Bogacki-Shampine 3 (2) coefficients
    c = np.array([0, 1 / 2, 3 / 4, 1])
    a = np.array(
        [[0, 0, 0, 0], [1 / 2, 0, 0, 0], [0, 3 / 4, 0, 0], [2 / 9, 1 / 3, 4 / 9, 0]]
    )
    b3 = np.array([2 / 9, 1 / 3, 4 / 9, 0])
    b2 = np.array([7 / 24, 1 / 4, 1 / 3, 1 / 8])
    return c, a, b3, b2


def get_parameters(order: str):
    """Tableau (c, a, b_higher, b_lower) and order of the higher method."""
    if order == "23":
        return (*RK23_parameters(), 3)
    elif order == "45":
        return (*RK45_parameters(), 5)
    raise ValueError(f"no RK solver for given order: {order}")
