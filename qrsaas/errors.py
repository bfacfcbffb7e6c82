"""Erros de domínio do serviço de QR Codes.

Cada erro carrega o status HTTP correspondente; o handler registrado em
``qrsaas.main`` converte para ``{"detail": ...}``.
"""
from typing import Optional


class QRServiceError(Exception):
    status_code = 500
    detail = "Erro interno."

    def __init__(self, detail: Optional[str] = None, headers: Optional[dict] = None):
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail
        self.headers = headers


class ValidationError(QRServiceError):
    status_code = 422
    detail = "Dados inválidos."


class NotFound(QRServiceError):
    status_code = 404
    detail = "QR Code não encontrado"


class Unauthorized(QRServiceError):
    status_code = 403
    detail = "Este QR Code pertence a outro usuário."


class DuplicateShortCode(QRServiceError):
    detail = "Código curto já utilizado."


class AllocationExhausted(QRServiceError):
    detail = "Não foi possível gerar um código curto livre."


class QuotaExceeded(QRServiceError):
    status_code = 403
    detail = "Limite de QR Codes atingido. Faça upgrade do seu plano."


class RenderFailed(QRServiceError):
    status_code = 502
    detail = "Falha ao gerar a imagem do QR Code."


class RateLimited(QRServiceError):
    status_code = 429
    detail = "Muitas requisições. Tente novamente mais tarde."

    def __init__(self, retry_after: int, detail: Optional[str] = None):
        self.retry_after = max(int(retry_after), 1)
        super().__init__(detail, headers={"Retry-After": str(self.retry_after)})


class DependencyUnavailable(QRServiceError):
    status_code = 503
    detail = "Serviço temporariamente indisponível."

    def __init__(self, detail: Optional[str] = None, retry_after: int = 1):
        self.retry_after = retry_after
        super().__init__(detail, headers={"Retry-After": str(retry_after)})
