"""
Variant Service — 商品バリアント在庫サービス

在庫・価格・割引を管理し、Product Catalog Service から呼ばれる
一括割引 Saga (prepare → commit | rollback) を提供する。
"""
