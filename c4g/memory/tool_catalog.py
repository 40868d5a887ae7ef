"""Connected-app actions the agent can run through the Composio bridge."""

from typing import Dict, List, Tuple

# app id → (display name, [(action slug, what it does), ...])
TOOL_CATALOG: Dict[str, Tuple[str, List[Tuple[str, str]]]] = {
    "gmail": ("Gmail", [
        ("GMAIL_SEND_EMAIL", "Send an email"),
        ("GMAIL_FETCH_EMAILS", "List recent emails"),
        ("GMAIL_CREATE_EMAIL_DRAFT", "Create a draft"),
    ]),
    "googlecalendar": ("Google Calendar", [
        ("GOOGLECALENDAR_CREATE_EVENT", "Create an event"),
        ("GOOGLECALENDAR_FIND_EVENT", "Search events"),
    ]),
    "googlesheets": ("Google Sheets", [
        ("GOOGLESHEETS_BATCH_GET", "Read ranges from a spreadsheet"),
        ("GOOGLESHEETS_BATCH_UPDATE", "Write values to a spreadsheet"),
    ]),
    "googledrive": ("Google Drive", [
        ("GOOGLEDRIVE_FIND_FILE", "Search files"),
        ("GOOGLEDRIVE_UPLOAD_FILE", "Upload a file"),
    ]),
    "googledocs": ("Google Docs", [
        ("GOOGLEDOCS_CREATE_DOCUMENT", "Create a document"),
        ("GOOGLEDOCS_GET_DOCUMENT_BY_ID", "Read a document"),
    ]),
    "google_analytics": ("Google Analytics", [
        ("GOOGLE_ANALYTICS_RUN_REPORT", "Run a traffic report"),
    ]),
    "googleads": ("Google Ads", [
        ("GOOGLEADS_GET_CAMPAIGN_BY_NAME", "Look up a campaign"),
    ]),
    "facebook": ("Facebook", [
        ("FACEBOOK_CREATE_POST", "Publish a page post"),
        ("FACEBOOK_GET_PAGE_INSIGHTS", "Read page insights"),
    ]),
    "instagram": ("Instagram", [
        ("INSTAGRAM_CREATE_MEDIA_CONTAINER", "Prepare a post"),
        ("INSTAGRAM_GET_USER_INSIGHTS", "Read account insights"),
    ]),
    "metaads": ("Meta Ads", [
        ("METAADS_GET_INSIGHTS", "Read campaign insights"),
    ]),
    "linkedin": ("LinkedIn", [
        ("LINKEDIN_CREATE_LINKED_IN_POST", "Publish a post"),
    ]),
    "reddit": ("Reddit", [
        ("REDDIT_CREATE_REDDIT_POST", "Submit a post"),
        ("REDDIT_SEARCH_ACROSS_SUBREDDITS", "Search subreddits"),
    ]),
    "stripe": ("Stripe", [
        ("STRIPE_LIST_CHARGES", "List recent charges"),
        ("STRIPE_LIST_CUSTOMERS", "List customers"),
    ]),
    "shopify": ("Shopify", [
        ("SHOPIFY_GET_PRODUCTS", "List products"),
        ("SHOPIFY_GET_ORDERS_WITH_FILTERS", "List orders"),
    ]),
    "hubspot": ("HubSpot", [
        ("HUBSPOT_CREATE_CONTACT", "Create a contact"),
        ("HUBSPOT_SEARCH_CONTACTS", "Search contacts"),
    ]),
    "notion": ("Notion", [
        ("NOTION_CREATE_NOTION_PAGE", "Create a page"),
        ("NOTION_SEARCH_NOTION_PAGE", "Search pages"),
    ]),
}
