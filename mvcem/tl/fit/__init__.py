import mvcem.tl.fit.views
