"""Pix payment notification payload and business validation.

The provider's body is parsed into a typed model at the boundary; anything
that does not match the expected shape is rejected as a ValidationFailure
before it reaches the pipeline's store or ledger steps.
"""

from dataclasses import dataclass, field
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sbt_verifier.domain.exceptions import ValidationFailure
from sbt_verifier.domain.identity import is_valid_cpf


class PixPayer(BaseModel):
    """Payer block of a Pix notification."""

    model_config = ConfigDict(populate_by_name=True)

    cpf: str = Field(..., min_length=1, description="Payer CPF, any formatting")
    name: str | None = Field(None, alias="nome", description="Payer name")


class PixNotification(BaseModel):
    """Pix payment notification as delivered by the provider."""

    model_config = ConfigDict(populate_by_name=True)

    end_to_end_id: str = Field(
        ..., alias="endToEndId", min_length=1, max_length=128, description="Pix end-to-end id"
    )
    amount: Decimal = Field(..., alias="valor", description="Amount in BRL")
    currency: str = Field("BRL", alias="moeda", description="ISO currency code")
    status: str | None = Field(None, description="Provider payment status")
    payer: PixPayer = Field(..., alias="pagador")
    payer_message: str = Field(..., alias="infoPagador", description="Free text with the reference code")


def parse_notification(raw_body: bytes) -> PixNotification:
    """Parse a raw webhook body into a PixNotification.

    Raises:
        ValidationFailure: If the body is not JSON or misses required fields
    """
    try:
        return PixNotification.model_validate_json(raw_body)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}"
            for err in e.errors()
        ]
        raise ValidationFailure("Invalid notification payload", errors) from e


@dataclass(frozen=True)
class NotificationPolicy:
    """Business rules a settled verification payment must satisfy."""

    expected_amount: Decimal = Decimal("0.01")
    currency: str = "BRL"
    accepted_statuses: frozenset[str] = field(
        default_factory=lambda: frozenset({"completed", "paid", "CONCLUIDA"})
    )

    def validate(self, notification: PixNotification) -> None:
        """Check amount, currency, status and CPF.

        Raises:
            ValidationFailure: Listing every rule that failed
        """
        errors = []

        if notification.amount != self.expected_amount:
            errors.append(
                f"Invalid payment amount. Expected {self.expected_amount}, got {notification.amount}"
            )

        if notification.currency.upper() != self.currency.upper():
            errors.append(f"Invalid currency. Expected {self.currency}, got {notification.currency}")

        if notification.status is not None and notification.status not in self.accepted_statuses:
            errors.append(f"Invalid payment status: {notification.status}")

        if not is_valid_cpf(notification.payer.cpf):
            errors.append("Invalid CPF")

        if not notification.payer_message.strip():
            errors.append("Missing reference code in payer message")

        if errors:
            raise ValidationFailure("Payment validation failed", errors)
