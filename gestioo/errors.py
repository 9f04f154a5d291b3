"""Exception types shared by the pricing, API and export layers."""


class ValidationError(ValueError):
    """Input rejected before any network or export call."""

    def __init__(self, messages):
        if isinstance(messages, str):
            messages = [messages]
        self.messages = list(messages)
        super().__init__("; ".join(self.messages))


class ApiError(Exception):
    """Non-2xx response from the Gestioo REST backend."""

    def __init__(self, status: int | None, message: str) -> None:
        self.status = status
        self.message = message
        super().__init__(f"{status}: {message}" if status else message)


class ExportError(Exception):
    """A PDF or workbook could not be produced."""

    GENERIC_MESSAGE = "No se pudo generar el archivo"

    def __init__(self, message: str = GENERIC_MESSAGE) -> None:
        self.message = message
        super().__init__(message)
