"""Tests for environment-driven settings."""

import pytest

from collection_ranker import config


class TestRankSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("RANK_PAGE_SIZE", raising=False)
        monkeypatch.delenv("RANK_MAX_PRODUCTS", raising=False)

        assert config.rank_page_size() == 100
        assert config.rank_max_products() is None

    def test_page_size_is_clamped(self, monkeypatch):
        monkeypatch.setenv("RANK_PAGE_SIZE", "1000")
        assert config.rank_page_size() == 250
        monkeypatch.setenv("RANK_PAGE_SIZE", "0")
        assert config.rank_page_size() == 1

    def test_cap(self, monkeypatch):
        monkeypatch.setenv("RANK_MAX_PRODUCTS", " 500 ")
        assert config.rank_max_products() == 500

    @pytest.mark.parametrize("raw", ["0", "-5"])
    def test_non_positive_cap_means_no_cap(self, monkeypatch, raw):
        monkeypatch.setenv("RANK_MAX_PRODUCTS", raw)
        assert config.rank_max_products() is None

    def test_bad_integer(self, monkeypatch):
        monkeypatch.setenv("RANK_PAGE_SIZE", "lots")
        with pytest.raises(ValueError):
            config.rank_page_size()


class TestShopifySettings:
    def test_scopes_are_normalized(self, monkeypatch):
        monkeypatch.setenv("SCOPES", " read_products , write_products,,")
        assert config.scopes() == "read_products,write_products"

    def test_app_url_trailing_slash(self, monkeypatch):
        monkeypatch.setenv("SHOPIFY_APP_URL", "https://ranker.example.com/")
        assert config.app_url() == "https://ranker.example.com"

    def test_api_version_default(self, monkeypatch):
        monkeypatch.delenv("SHOPIFY_API_VERSION", raising=False)
        assert config.api_version() == config.DEFAULT_API_VERSION
