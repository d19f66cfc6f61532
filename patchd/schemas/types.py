from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator

from patchd.clock import as_utc

UTCDateTime = Annotated[datetime, AfterValidator(as_utc)]
