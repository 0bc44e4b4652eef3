"""API contract handling.

  - model.py     — Contract / Operation: the indexed contract document
  - loader.py    — load_contract() from a file path or http(s) URL
  - resolver.py  — OperationResolver seam, PathTemplateResolver,
                   is_undocumented_endpoint()
  - validator.py — SchemaValidator seam, JSONSchemaValidator

The proxy depends only on the two seams; both default implementations can be
replaced when constructing ``ValidatingProxy``.
"""
