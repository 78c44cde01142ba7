from .get_date_range import *
from .time_utils import *
