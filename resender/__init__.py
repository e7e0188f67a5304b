"""
Transactional queue resender for RabbitMQ
"""
from resender.destination import Decision, validate
from resender.engine import Outcome, ResendEngine, ResendResult
from resender.flow_monitor import FlowState, FlowStateMonitor
from resender.resend_config import ResendSettings, load_settings
from resender.transaction import TransactionController, TransactionState

__all__ = [
    'Decision',
    'FlowState',
    'FlowStateMonitor',
    'Outcome',
    'ResendEngine',
    'ResendResult',
    'ResendSettings',
    'TransactionController',
    'TransactionState',
    'load_settings',
    'validate',
]
