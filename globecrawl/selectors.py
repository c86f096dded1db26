"""Centralised selectors and URL fragments for the streaming catalog site."""

# ==== URL FRAGMENTS (joined onto browser.base_url) ====
BROWSE_PATH = "/browse"
GENRE_PATH = "/browse/genre/"
TITLE_PATH = "/title/"
SEARCH_PATH = "/search?q="
FILMS_GENRE_PATH = "/browse/genre/34399"
SERIES_GENRE_PATH = "/browse/genre/83"
ALPHABETICAL_QUERY = "?so=su"

# ==== LISTS (genre rows + search results) ====
LINK = ".slider-refocus"
THUMBNAIL = "img.boxart-image"
GENRE_BUTTON = 'div[label="Genres"] > div'
GENRE_LINKS = 'div[label="Genres"] > div + div li > a'

# ==== TITLE DETAIL (preview modal) ====
NAME = "h3.previewModal--section-header > strong"
RELEASE = "div.year"
CONTENT_RATING = "span.maturity-number"
DURATION = "span.duration"
IMAGE_DEFINITION = "span.player-feature-badge"
DESCRIPTION = "p.preview-modal-synopsis"
RATING_REASON = "p.specificRatingReason"
MATURITY_DESCRIPTION = "p.maturityDescription"
ABOUT_SECTIONS = "div.about-container > div.previewModal--tags"
SECTION_LABEL = "span.previewModal--tags-label"
SECTION_TAGS = "span.tag-item"
EPISODE_DURATION = "div.titleCardList-title > span > span.ellipsized"
AUDIO_DESCRIPTION = "span.audio-description-badge"

# String fields read from the title page, keyed by record field name.
TITLE_FIELDS = {
    "name": NAME,
    "release": RELEASE,
    "content_rating": CONTENT_RATING,
    "duration": DURATION,
    "image_definition": IMAGE_DEFINITION,
    "description": DESCRIPTION,
    "rating_reason": RATING_REASON,
    "maturity_description": MATURITY_DESCRIPTION,
}
MAX_TAG_SECTIONS = 10
