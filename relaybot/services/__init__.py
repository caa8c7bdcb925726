from relaybot.services.state_machine import (
    InvalidTransitionError,
    VerificationState,
    can_transition,
    force_verified,
    pass_challenge,
    start_challenge,
    transition,
)
from relaybot.services.user_service import (
    assign_topic,
    clear_topic,
    find_user_by_topic,
    get_or_create_user,
    update_user,
)
