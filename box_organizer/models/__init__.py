# Models package
from box_organizer.models.location import Location
from box_organizer.models.box import Box
from box_organizer.models.qr_code import QrCode, QrStatus
