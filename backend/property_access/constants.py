"""
Property constants - attribute keys and limits shared by the store and the engine.
"""

# Well-known keys of the field attribute bag
ATTR_ACCESS_MODE = "access_mode"
ATTR_PROTECTED = "protected"
ATTR_SOURCE_PLUGIN_ID = "source_plugin_id"
ATTR_OPTIONS = "options"
ATTR_SORT_ORDER = "sort_order"

# Pagination defaults
DEFAULT_PAGE_SIZE = 60
MAX_PAGE_SIZE = 1000

# Custom profile attributes
CPA_GROUP_NAME = "custom_profile_attributes"
CPA_FIELD_LIMIT = 20
CPA_TARGET_TYPE = "user"

# Outbound events
EVENT_CPA_FIELD_CREATED = "custom_profile_attributes_field_created"
EVENT_CPA_FIELD_UPDATED = "custom_profile_attributes_field_updated"
EVENT_CPA_FIELD_DELETED = "custom_profile_attributes_field_deleted"
EVENT_CPA_VALUES_UPDATED = "custom_profile_attributes_values_updated"

# Attribute keys marking a field as synced from an external directory
ATTR_LDAP = "ldap"
ATTR_SAML = "saml"
