from .db_base_model import *
from .patient_table import *
from .provider_table import *
from .chair_table import *
from .appointment_table import *
from .recurring_table import *
from .treatment_plan_table import *
from .case_acceptance_table import *
from .claim_table import *
from .audit_log_table import *
