from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class PartnerSubmission:
    partner_order_id: int
    partner_item_id: Optional[int]
    status: str
    reused: bool = False


class FulfillmentProvider(ABC):
    """
    Abstract base class for manufacturing partners.

    Implementations translate partner failures into services.errors.SubmissionError.
    """

    @abstractmethod
    def submit_line_item(self, order_id, line_item_id, variant_id: int, file_url: str,
                         quantity: int = 1, recipient: Optional[dict] = None) -> PartnerSubmission:
        """
        Attach one print file to the partner order for `order_id`.

        Must be idempotent per (order_id, line_item_id): resubmitting the same
        file reuses the existing item.
        """
        pass

    @abstractmethod
    def confirm(self, partner_order_id: int) -> dict:
        """
        Confirm the partner order, or read it back when confirmation is disabled.
        """
        pass

    @abstractmethod
    def cancel_order(self, partner_order_id: int) -> bool:
        pass
