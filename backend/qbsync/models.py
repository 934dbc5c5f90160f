"""Every mapped class, so relationships resolve and create_all sees all tables."""
from .api.companies.models import Company  # noqa: F401
from .api.invoices.models import Invoice  # noqa: F401
from .api.quickbooks.models import QuickBooksToken  # noqa: F401
from .api.users.models import User  # noqa: F401
