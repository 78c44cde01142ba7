from .config_error import *
from .ApiError import *
from .domain_errors import *
