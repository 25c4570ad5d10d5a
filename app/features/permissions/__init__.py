"""
Permission feature module.

Implements the CMS authorization core: the resource/action catalog, system
role permission sets, organization-scoped custom roles with sparse
overrides, and the resolver shared by UI queries and API enforcement.
"""
