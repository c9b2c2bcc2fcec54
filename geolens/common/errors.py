"""Domain errors and failure typing."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for pipeline failures."""

    error_code = "PIPELINE_ERROR"
    user_message = "Impossible d'analyser la géologie."


class ConfigError(PipelineError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"
    user_message = "Configuration invalide : le service d'analyse n'est pas configuré."


class QuotaExceededError(PipelineError):
    """Raised immediately when the inference service reports a rate limit."""

    error_code = "QUOTA_EXCEEDED"

    def __init__(self, message: str = "", *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after

    @property
    def user_message(self) -> str:  # type: ignore[override]
        if self.retry_after:
            return (
                "Quota du service d'analyse dépassé. "
                f"Veuillez patienter environ {int(round(self.retry_after))} secondes avant de réessayer."
            )
        return "Quota du service d'analyse dépassé. Veuillez patienter une minute avant de réessayer."


class ServiceOverloadedError(PipelineError):
    """Raised once the attempt budget is spent on overload signals."""

    error_code = "SERVICE_OVERLOADED"
    user_message = "Le service d'analyse est momentanément surchargé. Réessayez dans quelques instants."


class TransportError(PipelineError):
    """Raised for any other transport failure once retries are exhausted."""

    error_code = "TRANSPORT_ERROR"
    user_message = "Erreur de communication avec le service d'analyse."


class EmptyResponseError(PipelineError):
    error_code = "EMPTY_RESPONSE"
    user_message = "Réponse vide de l'IA."


class InvalidFormatError(PipelineError):
    error_code = "INVALID_FORMAT"
    user_message = "Format de réponse invalide."


class IncompleteRecordError(PipelineError):
    """Raised when a parsed reply lacks a mandatory field."""

    error_code = "INCOMPLETE_RECORD"
    user_message = "Réponse incomplète de l'IA : fiche géologique inutilisable."

    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"Missing mandatory fields: {', '.join(missing)}")
        self.missing = missing


def failure_surface(exc: BaseException, *, include_details: bool = False) -> dict:
    if isinstance(exc, PipelineError):
        payload = {"error": exc.user_message}
    else:
        payload = {"error": PipelineError.user_message}
    if include_details:
        detail = str(exc) or type(exc).__name__
        payload["details"] = f"{getattr(exc, 'error_code', 'UNEXPECTED_ERROR')}: {detail}"
    return payload
