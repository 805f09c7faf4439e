from . import crud_dispute
from . import crud_dispute_message
