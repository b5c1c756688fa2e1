"""
Metafields module (custom attributes).

Operators define typed, optionally list-valued custom fields per owner type
(customer, product) without a schema migration:
- registry: definition CRUD, (owner_type, namespace, key) uniqueness
- validation: write-time checks of candidate values against a definition
- codec: canonical valueJson encode/decode
- visibility: who may see/edit a definition's values
"""
