from .data_template import *
from .seed_db import create_schema, seed_clinic, write_records_to_csv
