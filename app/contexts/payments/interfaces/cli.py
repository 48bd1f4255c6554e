from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import click
from flask import Flask

from app.contexts.payments.domain.transfer import WebhookConfig, to_decimal
from app.db import get_db
from app.security import generate_webhook_token
from app.ui_strings import error_message, success_message


def _mask_token(token: str | None) -> str:
    if not token:
        return "(nenhum)"
    if len(token) <= 8:
        return "*" * len(token)
    return f"{token[:4]}...{token[-4:]}"


def _echo_config(config: WebhookConfig | None) -> None:
    if config is None:
        click.echo("Webhook nao configurado.")
        return
    click.echo(f"enabled: {'sim' if config.enabled else 'nao'}")
    click.echo(f"auth_token: {_mask_token(config.auth_token)}")
    click.echo(f"max_auto_approve_amount: {config.max_auto_approve_amount:.2f}")
    click.echo(f"validate_pix_key: {'sim' if config.validate_pix_key else 'nao'}")
    click.echo(f"notification_email: {config.notification_email or '(nenhum)'}")


def register_webhook_cli(app: Flask) -> None:
    def _provider():
        return app.extensions["payments"].config_provider

    @app.cli.group("webhook")
    def webhook_group() -> None:
        """Configuracao do webhook de autorizacao de transferencias."""

    @webhook_group.command("show")
    def webhook_show() -> None:
        _echo_config(_provider().load(get_db()))

    @webhook_group.command("configure")
    @click.option("--enabled/--disabled", default=None, help="Liga ou desliga o webhook.")
    @click.option("--auth-token", default=None, help="Token compartilhado com o Asaas.")
    @click.option("--max-auto-approve", default=None, help="Valor maximo aprovado sem revisao manual.")
    @click.option("--validate-pix-key/--no-validate-pix-key", default=None)
    @click.option("--notification-email", default=None)
    def webhook_configure(enabled, auth_token, max_auto_approve, validate_pix_key, notification_email) -> None:
        db = get_db()
        provider = _provider()
        provider.invalidate()
        config = provider.load(db) or WebhookConfig()

        changes = {}
        if enabled is not None:
            changes["enabled"] = enabled
        if auth_token is not None:
            changes["auth_token"] = auth_token.strip() or None
        if max_auto_approve is not None:
            amount = to_decimal(max_auto_approve)
            if amount is None or amount <= Decimal("0"):
                raise click.BadParameter("informe um valor positivo", param_hint="--max-auto-approve")
            changes["max_auto_approve_amount"] = amount
        if validate_pix_key is not None:
            changes["validate_pix_key"] = validate_pix_key
        if notification_email is not None:
            changes["notification_email"] = notification_email.strip() or None

        updated = replace(config, **changes)
        if updated.enabled and not updated.auth_token:
            raise click.UsageError(error_message("webhook_token_required"))
        saved = provider.save(db, updated)
        click.echo(success_message("webhook_configured"))
        _echo_config(saved)

    @webhook_group.command("generate-token")
    @click.option("--save/--no-save", default=True, help="Grava o token gerado na configuracao.")
    def webhook_generate_token(save: bool) -> None:
        token = generate_webhook_token()
        if save:
            db = get_db()
            provider = _provider()
            provider.invalidate()
            config = provider.load(db) or WebhookConfig()
            provider.save(db, replace(config, auth_token=token))
        click.echo(token)
