from crm_promotions.models.customer import Customer
from crm_promotions.models.communication import (
    CommunicationPreferenceViolation,
    CustomerCommunicationPreference,
)
from crm_promotions.models.promotion import (
    Promotion,
    PromotionDelivery,
    PromotionDeliveryQueueItem,
)
from crm_promotions.models.trigger import AutomatedPromotionDelivery, PromotionTrigger
