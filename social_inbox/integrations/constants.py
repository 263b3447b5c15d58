# Central place for provider endpoints
GRAPH_API_VERSION = "v18.0"
GRAPH_URL = f"https://graph.facebook.com/{GRAPH_API_VERSION}"

YOUTUBE_API_URL = "https://www.googleapis.com/youtube/v3"
BUSINESS_PROFILE_REVIEWS_URL = "https://mybusiness.googleapis.com/v4"

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

IG_COMMENT_FIELDS = "id,text,username,timestamp,from,like_count,replies{id,text,username,timestamp,from}"
IG_MEDIA_FIELDS = "id,caption,media_type,timestamp,permalink"
CONVERSATION_FIELDS = "id,participants,messages{id,from,to,message,created_time}"

# Google Business Profile star ratings arrive as enum names
STAR_RATINGS = {"ONE": 1, "TWO": 2, "THREE": 3, "FOUR": 4, "FIVE": 5}

GOOGLE_REVIEW_EVENTS = ("NEW_REVIEW", "UPDATE_REVIEW")
YOUTUBE_COMMENT_EVENTS = ("NEW_COMMENT", "UPDATE_COMMENT")
