"""Classification of aggregator widget and transport failures"""

import re
from dataclasses import replace
from typing import Any, Mapping, Optional

from openfinance_gateway.domain.models import ClassifiedError, ErrorCategory

DUPLICATE_CODES = {
    "ITEM_USER_ALREADY_EXISTS",
    "ITEM_ALREADY_EXISTS",
    "USER_ALREADY_HAS_ITEM",
    "DUPLICATED_ITEM",
}

EXISTING_ITEM_PATTERN = re.compile(r"existing item|item already exists|already exists", re.IGNORECASE)

FATAL_MESSAGES = {
    "LOGIN_QUEUED": (
        "Já existe uma conexão em andamento com este banco. "
        "Aguarde alguns minutos e tente novamente."
    ),
    "ALREADY_UPDATING": (
        "Já existe uma conexão em andamento com este banco. "
        "Aguarde alguns minutos e tente novamente."
    ),
    "LOGIN_TIMEOUT": "O banco demorou demais para responder. Tente novamente.",
    "USER_INPUT_TIMEOUT": "O tempo para autorizar no banco expirou. Tente novamente.",
    "INVALID_CREDENTIALS": "Credenciais inválidas. Verifique seus dados de acesso ao banco.",
    "SITE_NOT_AVAILABLE": "Este banco não está disponível para conexão no momento.",
    "SITE_UNSUPPORTED": "Este banco não é suportado para conexão automática.",
    "CONNECTOR_NOT_SUPPORTED": "Este banco não é suportado para conexão automática.",
    "ACCOUNT_LOCKED": "Sua conta está bloqueada no banco. Regularize o acesso e tente novamente.",
}

GENERIC_MESSAGE = "Erro na conexão com o banco (código: {code}). Tente novamente ou contate o suporte."
SYNC_FAILED_MESSAGE = "Conexão feita, mas houve erro na sincronização dos dados. Tente novamente."
TOKEN_FAILED_MESSAGE = "Não foi possível iniciar a conexão bancária."
MISSING_ITEM_MESSAGE = "Erro ao identificar a conexão."
QUOTA_MESSAGE = (
    "Você atingiu o limite de {max_per_day} conexões/sincronizações bancárias por dia. "
    "O limite é renovado à meia-noite."
)
PLAN_MESSAGE = "A conexão automática com bancos está disponível apenas nos planos pagos."


def extract_item_id(data: Any) -> Optional[str]:
    """Item id carried by a widget error payload ({item: {id}} or {itemId})"""
    if not isinstance(data, Mapping):
        return None
    item = data.get("item")
    if isinstance(item, Mapping) and item.get("id"):
        return str(item["id"])
    if data.get("itemId"):
        return str(data["itemId"])
    return None


def _data_message(data: Any) -> str:
    if isinstance(data, Mapping):
        return str(data.get("message") or "")
    if isinstance(data, str):
        return data
    return ""


def classify_error(
    code: Optional[str],
    data_message: Optional[str] = None,
    message: Optional[str] = None,
) -> ClassifiedError:
    """
    Map a provider error to a category and user-facing message.

    Nothing is silently retryable: duplicates go to the manage view, everything
    else is fatal and needs the user to retry or close.
    """
    normalized = (code or "").strip().upper()
    texts = [text for text in (data_message, message) if text]

    if normalized in DUPLICATE_CODES or any(EXISTING_ITEM_PATTERN.search(t) for t in texts):
        return ClassifiedError(
            category=ErrorCategory.DUPLICATE,
            message="Este banco já está conectado. Gerencie a conexão existente.",
            code=code,
        )

    if normalized in FATAL_MESSAGES:
        return ClassifiedError(category=ErrorCategory.FATAL, message=FATAL_MESSAGES[normalized], code=code)

    if texts:
        return ClassifiedError(category=ErrorCategory.FATAL, message=texts[0], code=code)

    return ClassifiedError(
        category=ErrorCategory.FATAL,
        message=GENERIC_MESSAGE.format(code=code or "desconhecido"),
        code=code,
    )


def classify_widget_error(payload: Mapping[str, Any]) -> ClassifiedError:
    """Classify the widget's onError({message?, code?, data?}) payload"""
    data = payload.get("data")
    classified = classify_error(
        code=payload.get("code"),
        data_message=_data_message(data),
        message=payload.get("message"),
    )
    item_id = extract_item_id(data)
    if item_id is None:
        return classified
    return replace(classified, item_id=item_id)


def transport_error(message: str, code: Optional[str] = None) -> ClassifiedError:
    """Backend unreachable or failing; the user may try again"""
    return ClassifiedError(category=ErrorCategory.RETRYABLE, message=message, code=code)


def quota_exhausted(max_per_day: int) -> ClassifiedError:
    """Business-rule rejection; retrying before local midnight cannot succeed"""
    return ClassifiedError(
        category=ErrorCategory.FATAL,
        message=QUOTA_MESSAGE.format(max_per_day=max_per_day),
        code="DAILY_LIMIT_REACHED",
        can_retry=False,
    )


def plan_not_eligible() -> ClassifiedError:
    """Starter plans have no aggregator access at all"""
    return ClassifiedError(
        category=ErrorCategory.FATAL,
        message=PLAN_MESSAGE,
        code="PLAN_NOT_ELIGIBLE",
        can_retry=False,
    )
