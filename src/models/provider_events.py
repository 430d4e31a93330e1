from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def _as_reference(value: Any) -> Any:
    # Providers are inconsistent about numeric vs string identifiers.
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


ProviderRef = Annotated[str, BeforeValidator(_as_reference)]


class ProviderEvent(BaseModel):
    """Base for provider webhook payloads; unknown keys are kept for audit."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def raw(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


# --- NymCard ---

class NymCardCardEvent(ProviderEvent):
    card_id: ProviderRef
    status: str | None = None
    user_id: str | None = None
    spending_limits: dict[str, Any] | None = None
    controls: dict[str, Any] | None = None
    block_reason: str | None = None


class NymCardTransactionEvent(ProviderEvent):
    card_id: ProviderRef
    transaction_id: ProviderRef
    amount: float | None = None
    currency: str | None = None
    merchant: dict[str, Any] | None = None
    status: str | None = None


class NymCardChargebackEvent(ProviderEvent):
    card_id: ProviderRef
    transaction_id: ProviderRef
    chargeback_amount: float | None = None
    reason: str | None = None


# --- Ramp ---

class RampOrderEvent(ProviderEvent):
    id: ProviderRef
    asset: Any = None
    user_address: str | None = Field(default=None, alias="userAddress")
    payment_method_type: str | None = Field(default=None, alias="paymentMethodType")
    final_tx_hash: str | None = Field(default=None, alias="finalTxHash")
    asset_exchange_rate: float | None = Field(default=None, alias="assetExchangeRate")
    crypto_amount: float | None = Field(default=None, alias="cryptoAmount")
    cancel_reason: str | None = Field(default=None, alias="cancelReason")


# --- Wio ---

class WioTransferEvent(ProviderEvent):
    transfer_id: ProviderRef
    organization_id: str | None = None
    estimated_completion: str | None = None
    completion_time: str | None = None
    final_amount: float | None = None
    fees: float | None = None
    failure_reason: str | None = None
    failure_code: str | None = None


class WioIncomingCreditEvent(ProviderEvent):
    credit_id: ProviderRef | None = None
    amount: float
    currency: str
    from_account: Any = None
    to_organization_id: str | None = None
    reference: str | None = None


# --- Guardarian ---

class GuardarianTransactionEvent(ProviderEvent):
    id: ProviderRef
    external_partner_link_id: str | None = None
    from_amount: float | None = None
    to_amount: float | None = None
    from_currency: str | None = None
    to_currency: str | None = None
    decline_reason: str | None = None


# --- Circle ---

class CirclePaymentEvent(ProviderEvent):
    payment_id: ProviderRef = Field(alias="paymentId")
    wallet_id: ProviderRef | None = Field(default=None, alias="walletId")
    amount: dict[str, Any] | None = None
    payment: dict[str, Any] | None = None
    failure: Any = None


class CircleWalletEvent(ProviderEvent):
    wallet_id: ProviderRef | None = Field(default=None, alias="walletId")
