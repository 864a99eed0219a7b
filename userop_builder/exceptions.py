from dataclasses import dataclass
from enum import Enum


class UserOperationExceptionCode(Enum):
    MalformedInput = -32602
    SimulationFailed = -32521
    ChainDataUnavailable = -32603


@dataclass
class ChainDataUnavailable(Exception):
    message: str
    exception_code: UserOperationExceptionCode = \
        UserOperationExceptionCode.ChainDataUnavailable

    def __str__(self) -> str:
        return self.message


@dataclass
class SimulationFailed(Exception):
    message: str
    revert_data: bytes | None = None
    exception_code: UserOperationExceptionCode = \
        UserOperationExceptionCode.SimulationFailed

    def __str__(self) -> str:
        return self.message


@dataclass
class MalformedInput(Exception):
    message: str
    exception_code: UserOperationExceptionCode = \
        UserOperationExceptionCode.MalformedInput

    def __str__(self) -> str:
        return self.message
