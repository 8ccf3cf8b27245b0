from .channel import (
    Channel as Channel,
    Delivery as Delivery,
    Subscription as Subscription,
)
from .local_channel import (
    LocalChannel as LocalChannel,
    LocalSubscription as LocalSubscription,
)
from .subject import (
    subject_matches as subject_matches,
    validate_subject as validate_subject,
)
from .typed_channel import (
    TypedChannel as TypedChannel,
    TypedSubscription as TypedSubscription,
)
