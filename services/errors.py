from __future__ import annotations


class ValidationError(ValueError):
    """Dados de entrada inválidos (checkout ou construção de registro)."""

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = list(fields or [])


class NotFoundError(LookupError):
    pass


class SignatureVerificationError(RuntimeError):
    pass


class MalformedPayloadError(ValidationError):
    pass
