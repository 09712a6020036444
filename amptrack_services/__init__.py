"""
Concrete collaborators and the engine facade.

- rendering: Jinja2 + WeasyPrint PDF renderer
- storage: filesystem artifact store
- notifications: AWS SES notifier (boto3)
- stripe_gateway: Stripe payments over httpx, webhook signature checks
- webhook: verified webhook -> reconciliation in one transaction
- engine: DocumentEngine facade and build_engine(settings)
"""

from amptrack_services.engine import DocumentEngine, DocumentServices, build_engine

__all__ = ["DocumentEngine", "DocumentServices", "build_engine"]
