"""Exceptions raised by the inscription client."""

from __future__ import annotations

from typing import Optional


class InscriptionError(Exception):
    pass


class TransientRemoteError(InscriptionError):
    """A remote call failed in a way that a later attempt may not."""


class AuthorityError(InscriptionError):
    pass


class DerivationError(InscriptionError):
    pass


class AccountNotFoundError(InscriptionError):
    def __init__(self, address: object) -> None:
        super().__init__(f"Account does not exist: {address}")
        self.address = address


class AlreadyInitializedError(InscriptionError):
    pass


class WriteFailedError(InscriptionError):
    def __init__(self, message: str, offset: Optional[int] = None) -> None:
        super().__init__(message)
        self.offset = offset


class AllocationStalledError(InscriptionError):
    pass


class InscriptionCancelled(InscriptionError):
    pass


class ProgramRejectedError(InscriptionError):
    """The program refused the instruction for a reason a retry cannot change."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


# Custom error codes returned by the inscription program.
PROGRAM_ERROR_NAMES = {
    0: "AlreadyInitialized",
    1: "NotInitialized",
    2: "DerivedKeyInvalid",
    3: "InvalidSystemProgram",
    4: "InvalidJson",
    5: "BorshSerializeError",
    6: "BorshDeserializeError",
    7: "InvalidAuthority",
    8: "NumericalOverflow",
    9: "IncorrectOwner",
    10: "MintMismatch",
    11: "InvalidTokenStandard",
    12: "NotEnoughTokens",
}

_FATAL_CODES = {
    0: AlreadyInitializedError,
    2: DerivationError,
    7: AuthorityError,
    9: DerivationError,
    10: DerivationError,
}


def classify_program_error(code: int, detail: str = "") -> InscriptionError:
    name = PROGRAM_ERROR_NAMES.get(code, f"Custom({code})")
    message = f"Inscription program error {code} ({name})"
    if detail:
        message = f"{message}: {detail}"
    if code == 1:
        return AccountNotFoundError(detail or name)
    if code in _FATAL_CODES:
        return _FATAL_CODES[code](message)
    if code in PROGRAM_ERROR_NAMES:
        return ProgramRejectedError(message, code)
    # Codes outside the program's table come from other programs in the transaction.
    return TransientRemoteError(message)
