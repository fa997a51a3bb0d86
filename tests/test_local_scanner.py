import pytest

from vulnscan.local_scanner import (
    LocalScanner,
    NoPackagesDetectedError,
    ScanFailedError,
    UnknownOSError,
    UnsupportedOSError,
    merge_pkgs,
    skipped,
)
from vulnscan.types import (
    OS,
    SECURITY_CHECK_CONFIG,
    SECURITY_CHECK_VULNERABILITY,
    VULN_TYPE_LIBRARY,
    VULN_TYPE_OS,
    Application,
    ArtifactDetail,
    DetectedMisconfiguration,
    DetectedVulnerability,
    Layer,
    Library,
    LibraryInfo,
    Misconfiguration,
    MisconfResult,
    MisconfStatus,
    Package,
    Result,
    ResultClass,
    ScanOptions,
)

BLOB = "sha256:5216338b40a7b96416b8b9858974bbe4acc3096ee60acbc4dfb1ee02aecceb10"
DIFF_MUSL = "sha256:ebf12965380b39889c99a9c02e82ba465f887b45975b6e389d42e9e6a3857888"
DIFF_AUSL = "sha256:bbf12965380b39889c99a9c02e82ba465f887b45975b6e389d42e9e6a3857888"
DIFF_RAILS = "sha256:0ea33a93585cf1917ba522b2304634c3073654062d5282c1346322967790ef33"
DIFF_OTHER = "sha256:9922bc15eeefe1637b803ef2106f178152ce19a391f24aec838cbe2e48e73303"
DIFF_5CB = "sha256:5cb2a5009179b1e78ecfef81a19756328bb266456cf9a9dbbcf9af8b83b735f0"

VULN_OPTIONS = ScanOptions(
    vuln_type=[VULN_TYPE_OS, VULN_TYPE_LIBRARY],
    security_checks=[SECURITY_CHECK_VULNERABILITY],
)


class FakeApplier:
    def __init__(self, detail=None, error=None):
        self.detail = detail
        self.error = error
        self.calls = []

    def apply_layers(self, artifact_id, blob_ids):
        self.calls.append((artifact_id, blob_ids))
        if self.error is not None:
            raise self.error
        return self.detail


class FakeOspkgDetector:
    def __init__(self, vulns=None, eosl=False, error=None):
        self.vulns = vulns or []
        self.eosl = eosl
        self.error = error
        self.calls = []

    def detect(self, image_name, os_family, os_name, created, pkgs):
        self.calls.append((os_family, os_name, list(pkgs)))
        if self.error is not None:
            raise self.error
        return self.vulns, self.eosl


class FakeLibraryDetector:
    advisories = {
        ("rails", "4.0.2"): ("CVE-2014-0081", "4.0.3, 3.2.17"),
        ("laravel/framework", "6.0.0"): ("CVE-2021-21263", "8.22.1, 7.30.3, 6.20.12"),
    }

    def __init__(self, fail=False):
        self.fail = fail

    def detect(self, app_type, libraries):
        if self.fail:
            raise ValueError("broken advisory")
        vulns = []
        for lib in libraries:
            hit = self.advisories.get((lib.library.name, lib.library.version))
            if hit:
                vulns.append(
                    DetectedVulnerability(
                        vulnerability_id=hit[0],
                        pkg_name=lib.library.name,
                        installed_version=lib.library.version,
                        fixed_version=hit[1],
                        layer=lib.layer,
                    )
                )
        return vulns


def rails_app(diff=DIFF_RAILS, path="/app/Gemfile.lock", version="4.0.2"):
    return Application(
        type="bundler",
        file_path=path,
        libraries=[LibraryInfo(library=Library(name="rails", version=version), layer=Layer(diff_id=diff))],
    )


def laravel_app(path="/app/composer-lock.json"):
    return Application(
        type="composer",
        file_path=path,
        libraries=[
            LibraryInfo(
                library=Library(name="laravel/framework", version="6.0.0"),
                layer=Layer(diff_id=DIFF_OTHER),
            )
        ],
    )


def rails_result(diff=DIFF_RAILS, target="/app/Gemfile.lock", packages=None):
    return Result(
        target=target,
        vulnerabilities=[
            DetectedVulnerability(
                vulnerability_id="CVE-2014-0081",
                pkg_name="rails",
                installed_version="4.0.2",
                fixed_version="4.0.3, 3.2.17",
                layer=Layer(diff_id=diff),
            )
        ],
        class_=ResultClass.LANG_PKG,
        type="bundler",
        packages=packages or [],
    )


def laravel_result(target="/app/composer-lock.json"):
    return Result(
        target=target,
        vulnerabilities=[
            DetectedVulnerability(
                vulnerability_id="CVE-2021-21263",
                pkg_name="laravel/framework",
                installed_version="6.0.0",
                fixed_version="8.22.1, 7.30.3, 6.20.12",
                layer=Layer(diff_id=DIFF_OTHER),
            )
        ],
        class_=ResultClass.LANG_PKG,
        type="composer",
    )


def musl_vuln():
    return DetectedVulnerability(
        vulnerability_id="CVE-2020-9999",
        pkg_name="musl",
        installed_version="1.2.3",
        fixed_version="1.2.4",
        layer=Layer(diff_id=DIFF_MUSL),
    )


def musl_pkg():
    return Package(name="musl", version="1.2.3", layer=Layer(diff_id=DIFF_MUSL))


def make_scanner(applier, detector=None, lib_detector=None):
    return LocalScanner(applier, detector or FakeOspkgDetector(), lib_detector or FakeLibraryDetector())


def test_happy_path():
    applier = FakeApplier(
        ArtifactDetail(os=OS(family="alpine", name="3.11"), packages=[musl_pkg()], applications=[rails_app()])
    )
    detector = FakeOspkgDetector(vulns=[musl_vuln()], eosl=True)
    results, os_found = make_scanner(applier, detector).scan("alpine:latest", "", [BLOB], VULN_OPTIONS)

    assert results == [
        Result(
            target="alpine:latest (alpine 3.11)",
            vulnerabilities=[musl_vuln()],
            class_=ResultClass.OS_PKG,
            type="alpine",
        ),
        rails_result(),
    ]
    assert os_found == OS(family="alpine", name="3.11", eosl=True)
    assert applier.calls == [("", [BLOB])]
    assert detector.calls == [("alpine", "3.11", [musl_pkg()])]


def test_happy_path_with_list_all_packages():
    ausl = Package(name="ausl", version="1.2.3", layer=Layer(diff_id=DIFF_AUSL))
    applier = FakeApplier(
        ArtifactDetail(
            os=OS(family="alpine", name="3.11"),
            packages=[musl_pkg(), ausl],
            applications=[rails_app()],
        )
    )
    detector = FakeOspkgDetector(vulns=[musl_vuln()], eosl=False)
    options = ScanOptions(
        vuln_type=[VULN_TYPE_OS, VULN_TYPE_LIBRARY],
        security_checks=[SECURITY_CHECK_VULNERABILITY],
        list_all_packages=True,
    )
    results, os_found = make_scanner(applier, detector).scan("alpine:latest", "", [BLOB], options)

    assert results == [
        Result(
            target="alpine:latest (alpine 3.11)",
            packages=[ausl, musl_pkg()],
            vulnerabilities=[musl_vuln()],
            class_=ResultClass.OS_PKG,
            type="alpine",
        ),
        rails_result(
            packages=[Package(name="rails", version="4.0.2", layer=Layer(diff_id=DIFF_RAILS))]
        ),
    ]
    assert os_found == OS(family="alpine", name="3.11")
    assert detector.calls == [("alpine", "3.11", [musl_pkg(), ausl])]


def test_happy_path_with_empty_os():
    applier = FakeApplier(ArtifactDetail(os=OS(), applications=[rails_app(diff=DIFF_OTHER)]))
    detector = FakeOspkgDetector()
    results, os_found = make_scanner(applier, detector).scan("alpine:latest", "", [BLOB], VULN_OPTIONS)
    assert results == [rails_result(diff=DIFF_OTHER)]
    assert os_found == OS()
    assert detector.calls == []


def test_happy_path_with_no_package():
    detail = ArtifactDetail(os=OS(family="alpine", name="3.11"), applications=[rails_app()])
    applier = FakeApplier(error=NoPackagesDetectedError(detail))
    detector = FakeOspkgDetector(eosl=False)
    results, os_found = make_scanner(applier, detector).scan("alpine:latest", "", [BLOB], VULN_OPTIONS)
    assert results == [
        Result(target="alpine:latest (alpine 3.11)", class_=ResultClass.OS_PKG, type="alpine"),
        rails_result(),
    ]
    assert os_found == OS(family="alpine", name="3.11")
    assert detector.calls == [("alpine", "3.11", [])]


def test_happy_path_with_unsupported_os():
    applier = FakeApplier(
        ArtifactDetail(os=OS(family="fedora", name="27"), applications=[rails_app(diff=DIFF_OTHER)])
    )
    detector = FakeOspkgDetector(error=UnsupportedOSError())
    results, os_found = make_scanner(applier, detector).scan("fedora:27", "", [BLOB], VULN_OPTIONS)
    assert results == [rails_result(diff=DIFF_OTHER)]
    assert os_found == OS(family="fedora", name="27")


def test_happy_path_with_scratch_image():
    blob = "sha256:a6d503001157aedc826853f9b67f26d35966221b158bff03849868ae4a821116"
    applier = FakeApplier(error=UnknownOSError(ArtifactDetail(os=None)))
    results, os_found = make_scanner(applier).scan("busybox:latest", "", [blob], VULN_OPTIONS)
    assert results == []
    assert os_found is None
    assert applier.calls == [("", [blob])]


def test_happy_path_with_only_library_detection():
    applier = FakeApplier(
        ArtifactDetail(
            os=OS(family="alpine", name="3.11"),
            packages=[Package(name="musl", version="1.2.3")],
            applications=[rails_app(diff=DIFF_5CB), laravel_app()],
        )
    )
    detector = FakeOspkgDetector()
    options = ScanOptions(vuln_type=[VULN_TYPE_LIBRARY], security_checks=[SECURITY_CHECK_VULNERABILITY])
    results, os_found = make_scanner(applier, detector).scan("alpine:latest", "", [BLOB], options)
    assert results == [rails_result(diff=DIFF_5CB), laravel_result()]
    assert os_found == OS(family="alpine", name="3.11")
    assert detector.calls == []


def test_happy_path_with_skip_directories():
    applier = FakeApplier(
        ArtifactDetail(
            os=OS(family="alpine", name="3.11"),
            packages=[Package(name="musl", version="1.2.3")],
            applications=[
                rails_app(
                    diff=DIFF_5CB,
                    path="usr/lib/ruby/gems/2.5.0/gems/http_parser.rb-0.6.0/Gemfile.lock",
                    version="5.1",
                ),
                laravel_app(path="app/composer-lock.json"),
            ],
            misconfigurations=[
                Misconfiguration(
                    file_type="kubernetes",
                    file_path="/app/k8s/deployment.yaml",
                    failures=[MisconfResult(namespace="appshield.kubernetes.id100", message="something bad")],
                )
            ],
        )
    )
    options = ScanOptions(
        vuln_type=[VULN_TYPE_LIBRARY],
        security_checks=[SECURITY_CHECK_VULNERABILITY, SECURITY_CHECK_CONFIG],
        skip_dirs=["/usr/lib/ruby/gems", "/app/k8s"],
    )
    results, os_found = make_scanner(applier).scan("alpine:latest", "", [BLOB], options)
    assert results == [laravel_result(target="app/composer-lock.json")]
    assert os_found == OS(family="alpine", name="3.11")


def test_happy_path_with_misconfigurations():
    layer = Layer(diff_id=DIFF_OTHER)
    check = "Kubernetes Security Check"
    applier = FakeApplier(
        ArtifactDetail(
            misconfigurations=[
                Misconfiguration(
                    file_type="kubernetes",
                    file_path="/app/configs/pod.yaml",
                    warnings=[
                        MisconfResult(
                            namespace="main.kubernetes.id300",
                            id="ID300",
                            type=check,
                            title="Bad Deployment",
                            severity="DUMMY",
                        )
                    ],
                    exceptions=[
                        MisconfResult(
                            namespace="main.kubernetes.id100",
                            id="ID100",
                            type=check,
                            title="Bad Deployment",
                            severity="HIGH",
                        )
                    ],
                    layer=layer,
                ),
                Misconfiguration(
                    file_type="kubernetes",
                    file_path="/app/configs/deployment.yaml",
                    successes=[
                        MisconfResult(
                            namespace="appshield.kubernetes.id200",
                            id="ID200",
                            type=check,
                            title="Bad Deployment",
                            severity="MEDIUM",
                        )
                    ],
                    failures=[
                        MisconfResult(
                            namespace="main.kubernetes.id100",
                            message="something bad",
                            id="ID100",
                            type=check,
                            title="Bad Deployment",
                            severity="HIGH",
                        )
                    ],
                    layer=layer,
                ),
            ]
        )
    )
    options = ScanOptions(security_checks=[SECURITY_CHECK_CONFIG])
    results, os_found = make_scanner(applier).scan("/app/configs", "", [BLOB], options)

    assert results == [
        Result(
            target="/app/configs/deployment.yaml",
            class_=ResultClass.CONFIG,
            type="kubernetes",
            misconfigurations=[
                DetectedMisconfiguration(
                    type=check,
                    id="ID100",
                    title="Bad Deployment",
                    message="something bad",
                    namespace="main.kubernetes.id100",
                    severity="HIGH",
                    status=MisconfStatus.FAILURE,
                    layer=layer,
                ),
                DetectedMisconfiguration(
                    type=check,
                    id="ID200",
                    title="Bad Deployment",
                    message="No issues found",
                    namespace="appshield.kubernetes.id200",
                    severity="MEDIUM",
                    primary_url="https://avd.aquasec.com/appshield/id200",
                    references=["https://avd.aquasec.com/appshield/id200"],
                    status=MisconfStatus.PASSED,
                    layer=layer,
                ),
            ],
        ),
        Result(
            target="/app/configs/pod.yaml",
            class_=ResultClass.CONFIG,
            type="kubernetes",
            misconfigurations=[
                DetectedMisconfiguration(
                    type=check,
                    id="ID300",
                    title="Bad Deployment",
                    message="No issues found",
                    namespace="main.kubernetes.id300",
                    severity="MEDIUM",
                    status=MisconfStatus.FAILURE,
                    layer=layer,
                ),
                DetectedMisconfiguration(
                    type=check,
                    id="ID100",
                    title="Bad Deployment",
                    message="No issues found",
                    namespace="main.kubernetes.id100",
                    severity="HIGH",
                    status=MisconfStatus.EXCEPTION,
                    layer=layer,
                ),
            ],
        ),
    ]
    assert os_found is None


def test_tfsec_primary_url_taken_from_references():
    applier = FakeApplier(
        ArtifactDetail(
            misconfigurations=[
                Misconfiguration(
                    file_type="terraform",
                    file_path="main.tf",
                    failures=[
                        MisconfResult(
                            type="tfsec check",
                            id="AWS001",
                            severity="LOW",
                            references=["https://example.com/a", "https://tfsec.dev/docs/aws/AWS001/"],
                        )
                    ],
                )
            ]
        )
    )
    results, _ = make_scanner(applier).scan("x", "", [], ScanOptions(security_checks=[SECURITY_CHECK_CONFIG]))
    misconf = results[0].misconfigurations[0]
    assert misconf.primary_url == "https://tfsec.dev/docs/aws/AWS001/"
    assert misconf.severity == "LOW"
    assert misconf.references == ["https://example.com/a", "https://tfsec.dev/docs/aws/AWS001/"]


def test_failures_without_severity_default_to_critical():
    applier = FakeApplier(
        ArtifactDetail(
            misconfigurations=[
                Misconfiguration(file_type="yaml", file_path="a.yaml", failures=[MisconfResult(message="  bad  ")])
            ]
        )
    )
    results, _ = make_scanner(applier).scan("x", "", [], ScanOptions(security_checks=[SECURITY_CHECK_CONFIG]))
    misconf = results[0].misconfigurations[0]
    assert misconf.severity == "CRITICAL"
    assert misconf.message == "bad"


def test_empty_file_path_uses_predefined_target():
    app = Application(
        type="gemspec",
        file_path="",
        libraries=[LibraryInfo(library=Library(name="rails", version="4.0.2"))],
    )
    applier = FakeApplier(ArtifactDetail(applications=[app]))
    options = ScanOptions(vuln_type=[VULN_TYPE_LIBRARY], security_checks=[SECURITY_CHECK_VULNERABILITY])
    results, _ = make_scanner(applier).scan("x", "", [], options)
    assert [r.target for r in results] == ["Ruby"]


def test_scan_removed_packages_merges_history():
    history = [Package(name="musl", version="0.9"), Package(name="curl", version="7.0")]
    applier = FakeApplier(
        ArtifactDetail(os=OS(family="alpine", name="3.11"), packages=[musl_pkg()], history_packages=history)
    )
    detector = FakeOspkgDetector()
    options = ScanOptions(
        vuln_type=[VULN_TYPE_OS],
        security_checks=[SECURITY_CHECK_VULNERABILITY],
        scan_removed_packages=True,
    )
    make_scanner(applier, detector).scan("alpine", "", [BLOB], options)
    assert detector.calls == [("alpine", "3.11", [musl_pkg(), Package(name="curl", version="7.0")])]


def test_sad_path_apply_layers_error():
    applier = FakeApplier(error=RuntimeError("error"))
    with pytest.raises(ScanFailedError, match="failed to apply layers"):
        make_scanner(applier).scan("alpine:latest", "", [BLOB], VULN_OPTIONS)


def test_sad_path_ospkg_detect_error():
    applier = FakeApplier(ArtifactDetail(os=OS(family="alpine", name="3.11"), packages=[musl_pkg()]))
    detector = FakeOspkgDetector(error=RuntimeError("error"))
    with pytest.raises(ScanFailedError, match="failed to scan OS packages"):
        make_scanner(applier, detector).scan("alpine:latest", "", [BLOB], VULN_OPTIONS)


def test_sad_path_library_detect_error():
    applier = FakeApplier(
        ArtifactDetail(
            os=OS(family="alpine", name="3.11"),
            packages=[musl_pkg()],
            applications=[rails_app(version="6.0")],
        )
    )
    options = ScanOptions(vuln_type=[VULN_TYPE_LIBRARY], security_checks=[SECURITY_CHECK_VULNERABILITY])
    with pytest.raises(ScanFailedError, match="failed to scan application libraries"):
        make_scanner(applier, lib_detector=FakeLibraryDetector(fail=True)).scan(
            "alpine:latest", "", [BLOB], options
        )


@pytest.mark.parametrize(
    "file_path, skip_files, skip_dirs, want",
    [
        ("app/Gemfile.lock", [], [], False),
        ("app/Gemfile.lock", [], ["/app"], True),
        ("usr/lib/ruby/gems/2.5.0/gems/http_parser.rb-0.6.0/Gemfile.lock", [], ["/usr/lib/ruby"], True),
        ("Gemfile.lock", ["/Gemfile.lock"], [], True),
        ("Gemfile.lock", ["Gemfile.lock"], [], True),
        ("usr/lib/ruby/gems/2.5.0/gems/http_parser.rb-0.6.0/Gemfile.lock", [], ["lib/ruby"], False),
    ],
)
def test_skipped(file_path, skip_files, skip_dirs, want):
    assert skipped(file_path, skip_files, skip_dirs) is want


def test_merge_pkgs_prefers_installed_packages():
    installed = [Package(name="a", version="1"), Package(name="b", version="1")]
    history = [Package(name="a", version="0"), Package(name="c", version="2")]
    assert merge_pkgs(installed, history) == [
        Package(name="a", version="1"),
        Package(name="b", version="1"),
        Package(name="c", version="2"),
    ]
    assert len(installed) == 2