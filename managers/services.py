# managers/services.py
from typing import Optional

from managers.action_manager import ActionManager
from managers.order_manager import OrderManager
from managers.recovery_manager import RecoveryAdvisor
from managers.session_manager import SessionManager
from utils import db
from utils.config import DetectorSettings
from utils.detection import GenerativeDetector, HybridDetector, LLMCall


class Services:
    """Everything one chat turn needs, wired once per process (or per test)."""

    def __init__(self, store: Optional[db.Store] = None, settings: Optional[DetectorSettings] = None,
                 llm_call: Optional[LLMCall] = None):
        self.settings = settings or DetectorSettings()
        self.store = store or db.Store()
        self.sessions = SessionManager(self.store)
        self.orders = OrderManager(self.store, self.sessions, recent_window=self.settings.recent_orders_window)
        self.actions = ActionManager(self.store, self.orders, self.sessions, self.settings)
        self.detector = HybridDetector(GenerativeDetector(llm_call, self.settings), self.settings)

    def advisor(self, restaurant_id: str) -> RecoveryAdvisor:
        return RecoveryAdvisor(self.store.load_menu(restaurant_id))
