# managers/session_manager.py
from decimal import Decimal
from typing import Dict, Optional
import logging

from models import CustomerSession, Order, OrderStatus, SessionStats, SessionStatus, money, utcnow
from utils import db
from utils.errors import SessionNotFoundError, TableClaimError

logger = logging.getLogger(__name__)

CLAIM_ATTEMPTS = 5


def stats_for(orders) -> SessionStats:
    live = [o for o in orders if o.status != OrderStatus.CANCELLED]
    return SessionStats(total_orders=len(live),
                        total_spent=money(sum((o.total for o in live), Decimal("0"))))


class SessionManager:
    def __init__(self, store: db.Store):
        self.store = store

    def find_active_session(self, restaurant_id: str, table_number: str) -> Optional[CustomerSession]:
        sid = self.store.active_session_id(restaurant_id, table_number)
        if not sid:
            return None
        session = self.store.get_session(sid)
        if session is None or session.status != SessionStatus.ACTIVE:
            return None
        return session

    def get_or_create_active_session(self, restaurant_id: str, table_number: str,
                                     customer_name: Optional[str] = None) -> CustomerSession:
        """
        Concurrent callers for one table converge on one ACTIVE session: the
        candidate record is written first, then the table pointer is claimed
        with SET NX. A loser deletes its candidate and adopts the winner.
        """
        for _ in range(CLAIM_ATTEMPTS):
            existing = self.find_active_session(restaurant_id, table_number)
            if existing is not None:
                return existing

            stale = self.store.active_session_id(restaurant_id, table_number)
            if stale:
                logger.info("releasing stale table pointer %s for %s/%s", stale, restaurant_id, table_number)
                self.store.release_table(restaurant_id, table_number, stale)

            candidate = CustomerSession(restaurant_id=restaurant_id, table_number=table_number,
                                        customer_name=customer_name)
            self.store.save_session(candidate)
            if self.store.claim_table(restaurant_id, table_number, candidate.id):
                logger.info("opened session %s for %s/%s", candidate.id, restaurant_id, table_number)
                return candidate

            self.store.r.delete(db.session_key(candidate.id))
            winner = self.find_active_session(restaurant_id, table_number)
            if winner is not None:
                return winner
            # the winner closed between our claim and read
            logger.info("table %s/%s changed hands during claim, retrying", restaurant_id, table_number)
        raise TableClaimError(restaurant_id, table_number, CLAIM_ATTEMPTS)

    def recompute_session_stats(self, session_id: str) -> SessionStats:
        """Recount from the order records, never increment. Idempotent."""
        skey = db.session_key(session_id)
        lkey = db.session_orders_key(session_id)
        result: Dict[str, SessionStats] = {}

        def _tx(pipe) -> None:
            raw = pipe.get(skey)
            if raw is None:
                raise SessionNotFoundError(session_id)
            session = CustomerSession.model_validate_json(raw)
            okeys = [db.order_key(i) for i in pipe.lrange(lkey, 0, -1)]
            if okeys:
                # any order edited mid-recount forces a retry
                pipe.watch(skey, lkey, *okeys)
            orders = [Order.model_validate_json(r) for r in (pipe.mget(okeys) if okeys else []) if r is not None]
            stats = stats_for(orders)
            result["stats"] = stats
            if session.total_orders == stats.total_orders and session.total_spent == stats.total_spent:
                return
            updated = session.model_copy(update={"total_orders": stats.total_orders,
                                                 "total_spent": stats.total_spent})
            pipe.multi()
            pipe.set(skey, updated.model_dump_json())

        self.store.r.transaction(_tx, skey, lkey)
        return result["stats"]

    def close_session(self, session_id: str) -> CustomerSession:
        def _close(s: CustomerSession) -> Optional[CustomerSession]:
            if s.status == SessionStatus.CLOSED:
                return None
            return s.model_copy(update={"status": SessionStatus.CLOSED, "end_time": utcnow()})

        session = self.store.update(db.session_key(session_id), CustomerSession, _close)
        if session is None:
            raise SessionNotFoundError(session_id)
        self.store.release_table(session.restaurant_id, session.table_number, session.id)
        return session
