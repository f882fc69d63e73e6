from keyword_crawl.dedupe import DedupCache, normalize_url, url_key


def test_linkedin_job_urls_normalize_to_job_id() -> None:
    a = "https://in.linkedin.com/jobs/view/python-developer-at-acme-3812345678?refId=abc&trackingId=x"
    b = "https://www.linkedin.com/jobs/view/3812345678/"

    assert normalize_url(a) == "linkedin:job:3812345678"
    assert url_key(a) == url_key(b)


def test_tracking_params_and_fragment_are_dropped() -> None:
    url = "HTTPS://Example.COM/jobs/1/?utm_source=x&b=2&a=1#apply"

    assert normalize_url(url) == "https://example.com/jobs/1?a=1&b=2"


def test_url_key_is_64_bit_hex() -> None:
    assert len(url_key("https://example.com/a")) == 16


def test_cache_check_and_mark() -> None:
    cache = DedupCache()

    assert cache.check_and_mark("https://example.com/a")
    assert not cache.check_and_mark("https://example.com/a/")
    assert "https://example.com/a" in cache
    assert len(cache) == 1

    cache.clear()
    assert not cache.seen("https://example.com/a")
