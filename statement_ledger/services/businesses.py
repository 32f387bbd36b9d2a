"""Business (merchant) resolution"""

import logging
from sqlalchemy.orm import Session
from statement_ledger.domain.exceptions import BusinessMergeChainError
from statement_ledger.domain.hashing import normalize_business_name
from statement_ledger.infrastructure.database.models import Business
from statement_ledger.infrastructure.database.repositories import BusinessRepository

logger = logging.getLogger(__name__)


def to_title_case(name: str) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in name.split())


class BusinessService:
    """Maps raw statement merchant names to business rows"""

    def __init__(self, db: Session):
        self.businesses = BusinessRepository(db)

    def get_or_create_business(self, business_name: str) -> Business:
        """
        Find the business by normalized name, creating it if missing, then follow
        merged_to_id links to the business that absorbed it.

        A circular or broken merge chain is logged and resolution stops at the
        last business that could be loaded.
        """
        normalized_name = normalize_business_name(business_name)
        business = self.businesses.get_by_normalized_name(normalized_name)
        if business is None:
            business = self.businesses.create(normalized_name=normalized_name, display_name=to_title_case(business_name))
            logger.debug("Created business", extra={"business_id": business.id, "normalized_name": normalized_name})

        if business.merged_to_id is None:
            return business

        try:
            return self.resolve_merge_target(business)
        except BusinessMergeChainError as e:
            logger.error(str(e), extra={"business_id": business.id, "last_good_id": e.last_good.id})
            return e.last_good

    def resolve_merge_target(self, business: Business) -> Business:
        """
        Follow merged_to_id until a business that has not been merged.

        Raises:
            BusinessMergeChainError: chain loops back on itself or points to a missing business
        """
        current = business
        visited = [business.id]
        while current.merged_to_id is not None:
            if current.merged_to_id in visited:
                chain = " -> ".join(str(business_id) for business_id in visited + [current.merged_to_id])
                raise BusinessMergeChainError(f"Circular merge chain: {chain}", last_good=current)
            target = self.businesses.get(current.merged_to_id)
            if target is None:
                raise BusinessMergeChainError(
                    f"Business {current.id} points to non-existent business {current.merged_to_id}",
                    last_good=current,
                )
            visited.append(target.id)
            current = target

        logger.debug("Resolved business merge", extra={"original_id": business.id, "final_id": current.id})
        return current
