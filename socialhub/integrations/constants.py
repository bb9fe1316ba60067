# Central place for Meta Graph API constants
GRAPH_API_VERSION = "v18.0"
GRAPH_URL = f"https://graph.facebook.com/{GRAPH_API_VERSION}"
OAUTH_DIALOG_URL = f"https://www.facebook.com/{GRAPH_API_VERSION}/dialog/oauth"

META_SCOPES = (
    "pages_manage_posts",
    "pages_manage_engagement",
    "pages_read_engagement",
    "pages_manage_metadata",
    "pages_messaging",
    "instagram_basic",
    "instagram_manage_messages",
    "whatsapp_business_messaging",
    "whatsapp_business_management",
)

# Daily account-level insights pulled per channel type
FB_PAGE_INSIGHT_METRICS = ("page_impressions", "page_engaged_users", "page_post_engagements", "page_fans")
IG_ACCOUNT_INSIGHT_METRICS = ("impressions", "reach", "follower_count", "profile_views")

# Platform metric name -> stored Insight.metric
INSIGHT_METRIC_NAMES = {
    "page_impressions": "impressions",
    "page_engaged_users": "engaged_users",
    "page_post_engagements": "engagements",
    "page_fans": "followers",
    "follower_count": "followers",
}

WHATSAPP_MEDIA_TYPES = ("image", "video", "audio", "document")
WHATSAPP_TEMPLATE_LANGUAGE = "en_US"
