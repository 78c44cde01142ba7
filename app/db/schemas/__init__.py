from .common_schemas import *
from .appointment_schemas import *
from .recurring_schemas import *
from .case_acceptance_schemas import *
from .claim_schemas import *
