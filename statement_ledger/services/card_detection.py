"""Card identity detection: four evidence tiers tried in order before any parsing"""

import logging
from typing import Optional
from sqlalchemy.orm import Session
from statement_ledger.config import settings
from statement_ledger.domain.models import (
    CardDetectionResult,
    CardInfo,
    DetectionStatus,
    DetectionTier,
    Issuer,
)
from statement_ledger.infrastructure.database.models import Card
from statement_ledger.infrastructure.database.repositories import CardRepository
from statement_ledger.infrastructure.observability.metrics import record_detection
from statement_ledger.parsers import registry
from statement_ledger.parsers.filename_patterns import extract_card_from_filename

logger = logging.getLogger(__name__)


def cards_match(first: Optional[CardInfo], second: Optional[CardInfo]) -> bool:
    if first is None or second is None:
        return False
    return first.last4 == second.last4 and first.issuer == second.issuer


def extract_from_header(file_path: str) -> Optional[CardInfo]:
    return registry.extract_from_header(file_path, max_rows=settings.header_scan_rows)


def _card_details(card: Card, issuer: Optional[Issuer]) -> dict:
    return {
        "id": card.id,
        "last4": card.last4_digits,
        "issuer": issuer.value if issuer else None,
        "nickname": card.nickname,
    }


def _card_label(card: Card) -> str:
    return card.nickname or card.last4_digits


class CardDetectionService:
    """
    Determines {last4, issuer} for an uploaded statement.

    Only VERIFIED lets processing continue automatically. CLASH (conflicting
    evidence), NEW_CARD (unregistered) and NEEDS_MANUAL (no evidence) all wait
    for the user.
    """

    def __init__(self, db: Session):
        self.cards = CardRepository(db)

    def find_card_in_db(self, last4: str, owner: str) -> Optional[Card]:
        return self.cards.find_active(last4, owner)

    def detect_card(
        self,
        owner: str,
        file_path: str,
        filename: str,
        user_provided_card: Optional[CardInfo] = None,
    ) -> CardDetectionResult:
        result = self._detect(owner, file_path, filename, user_provided_card)
        record_detection(result.status.value, result.tier.value)
        logger.info(
            "Card detection finished",
            extra={
                "file_name": filename,
                "status": result.status.value,
                "tier": result.tier.value,
                "last4": result.card_info.last4 if result.card_info else None,
            },
        )
        return result

    def create_card(
        self,
        owner: str,
        last4: str,
        issuer: Issuer,
        nickname: Optional[str] = None,
        bank_or_company: Optional[str] = None,
    ) -> Card:
        """Register a card; the issuer decides which parser handles its files"""
        return self.cards.create(
            owner=owner,
            last4=last4,
            file_format_handler=registry.ISSUER_TO_FILE_FORMAT[issuer],
            nickname=nickname,
            bank_or_company=bank_or_company or registry.DEFAULT_BANK_NAMES.get(issuer, "Unknown"),
        )

    def _detect(
        self,
        owner: str,
        file_path: str,
        filename: str,
        user_provided_card: Optional[CardInfo],
    ) -> CardDetectionResult:
        # Tier 1: user-provided card
        if user_provided_card is not None:
            return self._check_registry(
                user_provided_card,
                owner,
                DetectionTier.TIER_1_USER,
                clash_key="user_provided",
                verified_message="Card verified: {label} ({issuer})",
                clash_message="User selected {candidate}, but DB shows {stored} for card {last4}",
                new_message="New card: {last4} ({issuer}) - will be added to database",
            )

        # Tier 2: filename pattern, validated against the header when possible
        filename_card = extract_card_from_filename(filename)
        if filename_card is not None:
            header_card = extract_from_header(file_path)
            if header_card is not None:
                if not cards_match(filename_card, header_card):
                    return CardDetectionResult(
                        status=DetectionStatus.CLASH,
                        tier=DetectionTier.TIER_2_FILENAME,
                        card_info=None,
                        needs_user_confirmation=True,
                        clash_details={"filename": filename_card, "header": header_card},
                        message=(
                            f"Conflict: filename shows {filename_card.issuer.value}-{filename_card.last4}, "
                            f"header shows {header_card.issuer.value}-{header_card.last4}"
                        ),
                    )
                return self._check_registry(
                    filename_card,
                    owner,
                    DetectionTier.TIER_2_FILENAME,
                    clash_key="filename",
                    verified_message="Card auto-detected from filename and verified: {label}",
                    clash_message="Filename/header show {candidate}, but DB shows {stored} for card {last4}",
                    new_message="New card detected from filename: {last4} ({issuer})",
                    extra_clash={"header": header_card},
                )

            # No header evidence: accept only a registry match with the same issuer
            db_card = self.find_card_in_db(filename_card.last4, owner)
            if db_card is not None and registry.issuer_for_handler(db_card.file_format_handler) == filename_card.issuer:
                return CardDetectionResult(
                    status=DetectionStatus.VERIFIED,
                    tier=DetectionTier.TIER_2_FILENAME,
                    card_info=filename_card,
                    db_card_id=db_card.id,
                    needs_user_confirmation=False,
                    message=f"Card detected from filename: {_card_label(db_card)} (header validation unavailable)",
                )

        # Tier 3: header only
        header_card = extract_from_header(file_path)
        if header_card is not None:
            return self._check_registry(
                header_card,
                owner,
                DetectionTier.TIER_3_HEADER,
                clash_key="header",
                verified_message="Card detected from file header: {label}",
                clash_message="Header shows {candidate}, but DB shows {stored} for card {last4}",
                new_message="New card detected from header: {last4} ({issuer})",
            )

        # Tier 4: manual
        return CardDetectionResult(
            status=DetectionStatus.NEEDS_MANUAL,
            tier=DetectionTier.TIER_4_MANUAL,
            card_info=None,
            needs_user_confirmation=True,
            message="Cannot auto-detect card info. Please provide card details manually.",
        )

    def _check_registry(
        self,
        candidate: CardInfo,
        owner: str,
        tier: DetectionTier,
        clash_key: str,
        verified_message: str,
        clash_message: str,
        new_message: str,
        extra_clash: Optional[dict] = None,
    ) -> CardDetectionResult:
        db_card = self.find_card_in_db(candidate.last4, owner)
        if db_card is None:
            return CardDetectionResult(
                status=DetectionStatus.NEW_CARD,
                tier=tier,
                card_info=candidate,
                needs_user_confirmation=True,
                message=new_message.format(last4=candidate.last4, issuer=candidate.issuer.value),
            )

        stored_issuer = registry.issuer_for_handler(db_card.file_format_handler)
        if stored_issuer == candidate.issuer:
            return CardDetectionResult(
                status=DetectionStatus.VERIFIED,
                tier=tier,
                card_info=candidate,
                db_card_id=db_card.id,
                needs_user_confirmation=False,
                message=verified_message.format(label=_card_label(db_card), issuer=candidate.issuer.value),
            )

        clash_details = {clash_key: candidate, **(extra_clash or {}), "db_card": _card_details(db_card, stored_issuer)}
        return CardDetectionResult(
            status=DetectionStatus.CLASH,
            tier=tier,
            card_info=None,
            needs_user_confirmation=True,
            clash_details=clash_details,
            message=clash_message.format(
                candidate=candidate.issuer.value,
                stored=stored_issuer.value if stored_issuer else "unknown",
                last4=candidate.last4,
            ),
        )
