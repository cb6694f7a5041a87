"""Card number, expiry and name validation"""

from datetime import date
from typing import Callable, Mapping, Optional, Sequence

from config import DEFAULT_NETWORKS, NetworkRule
from utils.data_classes import CandidateField, CardRecord, ExpiryDate, FieldKind
from utils.exceptions import ValidationError, ValidationFailure

MIN_NUMBER_LENGTH = 12
MAX_NUMBER_LENGTH = 19


def luhn_valid(number: str) -> bool:
    """Mod-10 checksum over a digit string."""
    if not number.isdigit():
        return False
    total = 0
    for index, char in enumerate(reversed(number)):
        digit = int(char)
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


class CardValidator:
    """카드 필드 검증 및 CardRecord 생성"""

    def __init__(self, networks: Sequence[NetworkRule] = DEFAULT_NETWORKS,
                 today: Callable[[], date] = date.today):
        self.networks = tuple(networks)
        self.today = today

    def validate(self, number: str, expiry: Optional[ExpiryDate] = None,
                 holder_name: Optional[str] = None) -> CardRecord:
        if not number.isdigit() or not MIN_NUMBER_LENGTH <= len(number) <= MAX_NUMBER_LENGTH:
            raise ValidationError(ValidationFailure.INVALID_LENGTH,
                                  f"Card number must have {MIN_NUMBER_LENGTH}-{MAX_NUMBER_LENGTH} digits")
        if not luhn_valid(number):
            raise ValidationError(ValidationFailure.INVALID_CHECKSUM, "Card number fails the Luhn check")

        network = self.find_network(number)
        if network is None:
            raise ValidationError(ValidationFailure.INVALID_LENGTH,
                                  f"No supported network for a {len(number)}-digit number")

        if expiry is not None:
            self._check_expiry(expiry)

        name = holder_name.strip() if holder_name else ""

        return CardRecord(
            number=number,
            expiry_month=expiry.month if expiry else None,
            expiry_year=expiry.year if expiry else None,
            holder_name=name or None,
            network=network.name,
        )

    def validate_fields(self, fields: Mapping[FieldKind, CandidateField]) -> CardRecord:
        """Validate a session's best-known field slots."""
        number = fields.get(FieldKind.NUMBER)
        if number is None:
            raise ValidationError(ValidationFailure.INVALID_LENGTH, "Card number is missing")
        expiry = fields.get(FieldKind.EXPIRY)
        name = fields.get(FieldKind.HOLDER_NAME)
        return self.validate(
            number.value,
            expiry.value if expiry else None,
            name.value if name else None,
        )

    def find_network(self, number: str) -> Optional[NetworkRule]:
        for rule in self.networks:
            if rule.matches(number):
                return rule
        return None

    def _check_expiry(self, expiry: ExpiryDate):
        if not 1 <= expiry.month <= 12:
            raise ValidationError(ValidationFailure.EXPIRED_DATE, f"Invalid expiry month {expiry.month}")
        today = self.today()
        year = today.year - today.year % 100 + expiry.year
        if (year, expiry.month) < (today.year, today.month):
            raise ValidationError(ValidationFailure.EXPIRED_DATE, f"Card expired {expiry}")
