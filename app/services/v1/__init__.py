from .base_service import *
from .audit_service import *
from .conflict_service import *
from .recurrence import *
from .appointment_service import *
from .recurring_service import *
from .case_acceptance_service import *
from .claim_service import *
