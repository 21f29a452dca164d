from .tenancy import Organization, User, DocumentSequence
from .scheduling import CoachingSession, SessionAgendaItem, SessionNote, SessionRating
from .goals import Goal, Milestone, GoalCollaborator, GoalComment, GoalSessionLink, GoalUpdateLog
from .billing import Payment, PaymentLineItem, PaymentReminder

__all__ = [
    'Organization', 'User', 'DocumentSequence',
    'CoachingSession', 'SessionAgendaItem', 'SessionNote', 'SessionRating',
    'Goal', 'Milestone', 'GoalCollaborator', 'GoalComment', 'GoalSessionLink', 'GoalUpdateLog',
    'Payment', 'PaymentLineItem', 'PaymentReminder',
]
