# Models package - normalized database models
from leadrouter.models.person import Person, PersonIdentity, LeadStatus, ClientType
from leadrouter.models.activity import Activity, ActivityTypes
from leadrouter.models.processed_email import ProcessedEmail
from leadrouter.models.token import MailboxToken, MailboxPollLease
from leadrouter.models.rotation import RotationEntry, RotationCursor
from leadrouter.models.duplicate import DuplicateFlag
from leadrouter.models.lead_source import LeadSource, PixelApiKey
