from parsers.iocs import IocCollector, extract_iocs, is_valid_ip


def test_private_addresses_follow_the_flag():
    text = "connection from 192.168.1.10 to 8.8.8.8"
    assert extract_iocs(text) == ["IP: 192.168.1.10", "IP: 8.8.8.8"]
    assert extract_iocs(text, include_private=False) == ["IP: 8.8.8.8"]


def test_loopback_zero_and_broadcast_are_never_iocs():
    assert not is_valid_ip("127.0.0.1")
    assert not is_valid_ip("0.0.0.0")
    assert not is_valid_ip("255.255.255.255")
    assert not is_valid_ip("300.1.1.1")
    assert is_valid_ip("10.1.2.3")
    assert not is_valid_ip("10.1.2.3", include_private=False)


def test_hashes_emails_and_domains():
    sha = "a" * 64
    text = f"mail from bob@corp.example with {sha} fetched evil-site.com/payload.exe"
    iocs = extract_iocs(text)
    assert f"Hash: {sha}" in iocs
    assert "Email: bob@corp.example" in iocs
    assert "Domain: evil-site.com" in iocs
    # the email domain and the file name are not reported as domains
    assert "Domain: corp.example" not in iocs
    assert "Domain: payload.exe" not in iocs


def test_collector_keeps_first_seen_order_without_duplicates():
    collector = IocCollector()
    collector.feed("8.8.8.8 then 1.1.1.1")
    collector.feed("1.1.1.1 again and 8.8.8.8")
    collector.feed("lookup evil-site.com")

    assert collector.iocs() == ("IP: 8.8.8.8", "IP: 1.1.1.1", "Domain: evil-site.com")
    assert collector.counts() == {"IP": 2, "Domain": 1}


def test_empty_text():
    assert extract_iocs("") == []
    assert IocCollector().iocs() == ()
