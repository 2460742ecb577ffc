import datetime as dt
import unittest
from unittest.mock import MagicMock

import requests
from lxml import etree

from pub_sync.pubmed import PubMedClient, parse_article, parse_month, parse_pub_date


ARTICLE_XML = b"""<?xml version="1.0"?>
<PubmedArticleSet>
  <PubmedArticle>
    <MedlineCitation>
      <PMID>38000001</PMID>
      <Article>
        <Journal>
          <JournalIssue><PubDate><Year>2024</Year><Month>Mar</Month><Day>7</Day></PubDate></JournalIssue>
          <Title>Hypertension (Dallas, Tex. : 1979)</Title>
        </Journal>
        <ArticleTitle>Pulse wave velocity in <i>older</i> adults</ArticleTitle>
        <Abstract>
          <AbstractText Label="BACKGROUND">Arterial stiffness rises with age.</AbstractText>
          <AbstractText Label="METHODS">SphygmoCor measurements.</AbstractText>
        </Abstract>
        <AuthorList>
          <Author><LastName>Doe</LastName><Initials>JA</Initials></Author>
          <Author><CollectiveName>Stiffness Consortium</CollectiveName></Author>
        </AuthorList>
        <ELocationID EIdType="pii">S000</ELocationID>
        <ELocationID EIdType="doi">10.1161/HYP.1</ELocationID>
      </Article>
    </MedlineCitation>
  </PubmedArticle>
  <PubmedArticle><MedlineCitation><PMID>2</PMID></MedlineCitation></PubmedArticle>
</PubmedArticleSet>
"""


def _response(content: bytes, status_code: int = 200):
    r = MagicMock()
    r.content = content
    r.status_code = status_code
    if status_code >= 400:
        r.raise_for_status.side_effect = requests.HTTPError(str(status_code))
    return r


class ParseTests(unittest.TestCase):
    def test_parse_article(self) -> None:
        root = etree.fromstring(ARTICLE_XML)
        pubs = [parse_article(n) for n in root.findall("PubmedArticle")]
        pub = pubs[0]
        self.assertIsNone(pubs[1])
        self.assertEqual(pub["pmid"], "38000001")
        self.assertEqual(pub["title"], "Pulse wave velocity in older adults")
        self.assertEqual(pub["authors"], "Doe JA, Stiffness Consortium")
        self.assertEqual(pub["journal"], "Hypertension (Dallas, Tex. : 1979)")
        self.assertEqual(pub["publication_date"], "2024-03-07")
        self.assertEqual(pub["abstract"], "BACKGROUND: Arterial stiffness rises with age. METHODS: SphygmoCor measurements.")
        self.assertEqual(pub["doi"], "10.1161/HYP.1")
        self.assertIn("pulse wave velocity", pub["keywords"])
        self.assertIn("sphygmocor", pub["keywords"])
        self.assertEqual(pub["pubmed_url"], "https://pubmed.ncbi.nlm.nih.gov/38000001/")

    def test_dates(self) -> None:
        self.assertEqual(parse_month("Sep"), 9)
        self.assertEqual(parse_month("13"), 1)
        medline = etree.fromstring("<PubDate><MedlineDate>2019 Nov-Dec</MedlineDate></PubDate>")
        self.assertEqual(parse_pub_date(medline), "2019-01-01")
        bad_day = etree.fromstring("<PubDate><Year>2023</Year><Month>02</Month><Day>30</Day></PubDate>")
        self.assertEqual(parse_pub_date(bad_day), "2023-02-01")
        self.assertIsNone(parse_pub_date(None))


class ClientTests(unittest.TestCase):
    def test_search_with_since_window(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(b"<eSearchResult><IdList><Id>1</Id><Id>2</Id></IdList></eSearchResult>")
        client = PubMedClient(session, base_url="https://eutils.test/", database="pubmed")
        ids = client.search("sphygmocor", 50, since=dt.datetime(2026, 4, 2, tzinfo=dt.timezone.utc))
        self.assertEqual(ids, ["1", "2"])
        url = session.get.call_args.args[0]
        params = session.get.call_args.kwargs["params"]
        self.assertEqual(url, "https://eutils.test/esearch.fcgi")
        self.assertEqual(params["mindate"], "2026/04/02")
        self.assertEqual(params["datetype"], "edat")
        self.assertEqual(params["retmax"], 50)

    def test_search_failure_returns_empty(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(b"", status_code=503)
        client = PubMedClient(session)
        self.assertEqual(client.search("x"), [])

    def test_fetch_details_batches_and_skips_failed_batch(self) -> None:
        session = MagicMock()
        session.get.side_effect = [_response(ARTICLE_XML), requests.ConnectionError("reset"), _response(b"<bad")]
        sleeps = []
        client = PubMedClient(session, batch_size=2, delay_seconds=0.5, sleep=sleeps.append)
        pubs = client.fetch_details(["1", "2", "3", "", "4", "5"])
        self.assertEqual([p["pmid"] for p in pubs], ["38000001"])
        self.assertEqual(session.get.call_count, 3)
        self.assertEqual(session.get.call_args_list[0].kwargs["params"]["id"], "1,2")
        self.assertEqual(sleeps, [0.5, 0.5])

    def test_fetch_details_stops_when_asked(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(ARTICLE_XML)
        sleeps = []
        stop = iter([False, True, True])
        client = PubMedClient(session, batch_size=2, delay_seconds=0.5, sleep=sleeps.append)
        pubs = client.fetch_details(["1", "2", "3", "4", "5", "6"], should_stop=lambda: next(stop))
        self.assertEqual([p["pmid"] for p in pubs], ["38000001"])
        self.assertEqual(session.get.call_count, 1)
        self.assertEqual(sleeps, [])


if __name__ == "__main__":
    unittest.main()
