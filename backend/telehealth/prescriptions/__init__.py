from .service import create_prescription, resubmit_prescription
from .submission import submit_order

__all__ = ['create_prescription', 'resubmit_prescription', 'submit_order']
