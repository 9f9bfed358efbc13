import os
from unittest.mock import patch

from plurr.core.config import Settings


class TestSettings:
    """Test configuration settings"""

    @patch.dict(os.environ, {}, clear=True)
    def test_settings_default_values(self):
        settings = Settings(_env_file=None)
        assert settings.APP_NAME == "Plurr API"
        assert settings.DEBUG is False
        assert settings.FAST_TEST_MODE is False
        assert settings.BLOB_STORE_BACKEND == "s3"
        assert settings.S3_BUCKET == "plurr-images"
        assert settings.MAX_UPLOAD_BYTES == 10 * 1024 * 1024
        assert settings.ALLOWED_UPLOAD_CONTENT_TYPES == ["image/jpeg"]
        assert settings.IMAGE_TRANSFORM_QUALITY == 50
        assert settings.JOIN_CODE_LENGTH == 6
        assert settings.DEFAULT_BACKGROUND_COLOR == "#e69c09"

    def test_settings_from_env_vars(self):
        with patch.dict(os.environ, {
            "APP_NAME": "Test App",
            "DEBUG": "true",
            "S3_ACCESS_KEY": "test-key",
            "MAX_UPLOAD_BYTES": "1024",
            "ALLOWED_UPLOAD_CONTENT_TYPES": '["image/jpeg", "image/png"]',
        }):
            settings = Settings(_env_file=None)
            assert settings.APP_NAME == "Test App"
            assert settings.DEBUG is True
            assert settings.S3_ACCESS_KEY == "test-key"
            assert settings.MAX_UPLOAD_BYTES == 1024
            assert settings.ALLOWED_UPLOAD_CONTENT_TYPES == ["image/jpeg", "image/png"]

    def test_boolean_parsing_with_whitespace(self):
        """Test that boolean values with whitespace are parsed correctly"""
        with patch.dict(os.environ, {
            "DEBUG": "true ",
            "SKIP_HEADER_CHECK": " false",
            "S3_USE_SSL": "true\r\n",
        }):
            settings = Settings(_env_file=None)
            assert settings.DEBUG is True
            assert settings.SKIP_HEADER_CHECK is False
            assert settings.S3_USE_SSL is True

    def test_cors_origin_list(self):
        with patch.dict(os.environ, {"CORS_ORIGINS": "http://a.test, http://b.test,,"}):
            settings = Settings(_env_file=None)
            assert settings.cors_origin_list == ["http://a.test", "http://b.test"]

    def test_s3_endpoint_url(self):
        with patch.dict(os.environ, {"S3_ENDPOINT": "minio:9000", "S3_USE_SSL": "true"}):
            assert Settings(_env_file=None).s3_endpoint_url == "https://minio:9000"
        with patch.dict(os.environ, {"S3_ENDPOINT": "https://account.r2.cloudflarestorage.com"}):
            assert Settings(_env_file=None).s3_endpoint_url == "https://account.r2.cloudflarestorage.com"
