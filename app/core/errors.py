"""
Error taxonomy shared by the normalizer, payment gate, inference builder
and session machine.

Every error carries a stable `code` (returned to clients) and a short
`user_message` suitable for display. Errors mixing in ConfigurationError
cannot be fixed by the user and are reported to operators instead.
"""

from __future__ import annotations

from typing import Optional


class CheckLanceError(Exception):
    code = "error"
    user_message = "Ocorreu um erro inesperado. Tente novamente."

    def __init__(self, detail: Optional[str] = None) -> None:
        self.detail = detail or self.user_message
        super().__init__(self.detail)

    @property
    def kind(self) -> str:
        return "configuration" if isinstance(self, ConfigurationError) else "user"


class ConfigurationError:
    """Marker for errors caused by missing or invalid server credentials."""


# Media normalizer
class MediaError(CheckLanceError):
    code = "media_error"


class UnsupportedFormat(MediaError):
    code = "unsupported_format"
    user_message = "Formato não suportado. Use JPG, PNG ou MP4."


class OversizedAsset(MediaError):
    code = "oversized_asset"
    user_message = "O arquivo deve ser menor que 50MB."


class MediaLoadError(MediaError):
    code = "media_load_error"
    user_message = "Erro ao processar vídeo. Tente um arquivo diferente."


# Payment gate
class PaymentError(CheckLanceError):
    code = "payment_error"


class PaymentDeclined(PaymentError):
    code = "payment_declined"
    user_message = "Pagamento não aprovado."


class PaymentConfigError(ConfigurationError, PaymentError):
    code = "payment_config_error"
    user_message = "Pagamento indisponível no momento."


class PaymentInProgress(PaymentError):
    code = "payment_in_progress"
    user_message = "Já existe um pagamento em andamento."


# Inference
class InferenceError(CheckLanceError):
    code = "inference_error"
    user_message = "Falha na análise. Verifique o arquivo e tente novamente."


class InferenceEmptyResponse(InferenceError):
    code = "inference_empty_response"


class InferenceMalformedResponse(InferenceError):
    code = "inference_malformed_response"


class InferenceTimeout(InferenceError):
    code = "inference_timeout"


class InferenceConfigError(ConfigurationError, InferenceError):
    code = "inference_config_error"
    user_message = "Análise indisponível no momento."


# Session machine
class InvalidTransition(CheckLanceError):
    code = "invalid_transition"
    user_message = "Ação não permitida nesta etapa."
