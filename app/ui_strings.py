from __future__ import annotations

from typing import Dict


PIX_KEY_TYPE_LABELS: Dict[str, str] = {
    "cpf": "CPF",
    "cnpj": "CNPJ",
    "email": "E-mail",
    "phone": "Telefone",
    "random": "Chave Aleatoria",
    "generic": "Chave PIX",
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "transfer_approved": "Transferencia aprovada automaticamente",
        "webhook_configured": "Configuracao do webhook atualizada.",
    },
    "error": {
        "action_invalid": "Acao invalida para esta operacao.",
        "payload_invalid": "Payload invalido",
        "pix_key_required": "Informe a chave PIX.",
        "rate_limit_exceeded": "Muitas requisicoes. Tente novamente em instantes.",
        "unexpected_error": "Nao foi possivel concluir a operacao. Tente novamente em instantes.",
        "webhook_disabled": "Webhook de autorizacao desativado",
        "webhook_unauthorized": "Token de autenticacao invalido",
        "webhook_token_required": "Defina um token de autenticacao antes de ativar o webhook.",
        "transfer_not_found": "Transferencia nao registrada no sistema",
        "transfer_validation_failed": "Validacao de seguranca falhou",
        "transfer_amount_above_limit": "Valor excede limite de R$ {limit}",
        "transfer_bank_data_mismatch": "Dados bancarios nao conferem",
        "transfer_processing_error": "Erro ao processar autorizacao",
    },
    "note": {
        "validation_failed": "Validacao de seguranca falhou no webhook",
        "amount_above_limit": "Valor excede limite de R$ {limit} - requer aprovacao manual",
        "amount_above_limit_short": "[Sistema] Valor excede limite automatico",
        "pix_key_mismatch": "Chave PIX nao confere com cadastro do fornecedor",
    },
}


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def note_message(key: str, default: str | None = None) -> str:
    return get_message("note", key, default)


def pix_key_type_label(key_type: str) -> str:
    return PIX_KEY_TYPE_LABELS.get(key_type, PIX_KEY_TYPE_LABELS["generic"])
