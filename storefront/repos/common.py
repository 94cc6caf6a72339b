# storefront/repos/common.py
from sqlalchemy import and_

from storefront.domain.owner import Account, Anonymous, Owner


def owner_clause(model, owner: Owner):
    """WHERE fragment selecting the rows of one owner on a session_id/user_id table."""
    if isinstance(owner, Account):
        return and_(model.user_id == owner.account_id, model.session_id.is_(None))
    if isinstance(owner, Anonymous):
        return and_(model.session_id == owner.session_id, model.user_id.is_(None))
    raise TypeError(f"Unsupported owner {owner!r}")
